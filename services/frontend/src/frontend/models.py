from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class DisplayName(BaseModel):
    model_config = ConfigDict(extra="allow")

    display_name: str | None = None


class Category(BaseModel):
    model_config = ConfigDict(extra="allow")

    label: str | None = None
    tag: str | None = None


class JobListing(BaseModel):
    """One posting as returned by the listings API; unknown fields are kept."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    title: str | None = None
    company_name: str | None = None
    company: DisplayName | None = None
    company_logo: str | None = None
    location: DisplayName | str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    description: str | None = None
    category: Category | str | None = None
    contract_type: str | None = None
    created: str | None = None
    redirect_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    def resolved_company(self) -> str | None:
        if self.company_name:
            return self.company_name
        if self.company is not None:
            return self.company.display_name
        return None

    def resolved_location(self) -> str | None:
        if isinstance(self.location, DisplayName):
            return self.location.display_name
        return self.location

    def resolved_category(self) -> str | None:
        if isinstance(self.category, Category):
            return self.category.label
        return self.category


class SavedJob(BaseModel):
    id: str
    title: str
    company_name: str
    company_logo: str
    location: str
    salary_min: float
    salary_max: float
    description: str
    category: str
    contract_type: str
    created: str
    redirect_url: str
    saved_at: str


class Identity(BaseModel):
    uid: str
    display_name: str | None = None
    email: str | None = None
    photo_url: str | None = None


class UserProfile(BaseModel):
    full_name: str = ""
    phone: str = ""
    location: str = ""
    skills: str = ""
    experience: str = ""
    education: str = ""
    updated_at: str | None = Field(default=None)

    def editable_fields(self) -> dict[str, str]:
        return self.model_dump(exclude={"updated_at"})


DEFAULT_PROFILE = UserProfile()
