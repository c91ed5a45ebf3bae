from __future__ import annotations

import importlib.util

# The frontend request models use pydantic's EmailStr, which needs email-validator.
# Skip collecting anything that imports the frontend app when it is not installed.
if importlib.util.find_spec("email_validator") is None:
    collect_ignore_glob = [
        "services/frontend/tests/test_frontend_api.py",
        "tests/bdd/test_saved_jobs_bdd.py",
        "tests/test_smoke_harness.py",
    ]
