from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def compact_params(params: Mapping[str, Any]) -> dict[str, str]:
    compacted: dict[str, str] = {}
    for key, value in params.items():
        if not value:
            continue
        if isinstance(value, bool):
            compacted[key] = "true"
        else:
            compacted[key] = str(value)
    return compacted


def stringify_details(details: Any) -> str:
    if details in (None, "", {}, []):
        return ""
    return json.dumps(details, separators=(",", ":"), default=str)
