"""Runtime configuration read from Streamlit secrets."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Dict, List, Optional

import streamlit as st

DEFAULT_REMOTE_SCHEMA_PATH = "form_schemas/{form_key}/form_schema.json"
DEFAULT_SUBMISSIONS_PATH = "submissions/{form_key}/{submission_id}.json"
DEFAULT_LOCAL_SUBMISSIONS_DIR = Path("submissions")
DEFAULT_API_URL = "https://api.github.com"


def _secret(name: str, default: Any = None) -> Any:
    """Return the secret stored under ``name`` or ``default``."""

    try:
        return st.secrets.get(name, default)
    except FileNotFoundError:
        return default


def _secrets_dict(name: str) -> Dict[str, Any]:
    """Return a mapping stored under ``name`` in Streamlit secrets."""

    value = _secret(name, {})
    if isinstance(value, Mapping):
        return dict(value)
    return {}


def _string_list(value: Any) -> List[str]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def github_settings() -> Dict[str, Any]:
    """Return GitHub configuration from secrets in a normalised structure.

    The ``[github]`` table wins; flat ``github_*`` keys are read when the
    table does not name both a repository and a path. An empty dict means the
    GitHub store is not configured.
    """

    secrets = _secrets_dict("github")
    repo = secrets.get("repo")
    path = secrets.get("path", DEFAULT_REMOTE_SCHEMA_PATH)
    branch = secrets.get("branch", "main")
    token = secrets.get("token")
    api_url = secrets.get("api_url")
    configured_forms = _string_list(secrets.get("forms", []))
    submissions_path = secrets.get("submissions_path")

    if not (repo and path):
        repo = _secret("github_repo", repo)
        path = _secret("github_file_path", path)
        branch = _secret("github_branch", branch)
        token = _secret("github_token", token)
        api_url = _secret("github_api_url", api_url)
    if not configured_forms:
        configured_forms = _string_list(_secret("github_forms"))
    if not submissions_path:
        submissions_path = _secret("github_submissions_path", _secret("submissions_path"))

    if repo and path:
        return {
            "repo": repo,
            "path": path,
            "branch": branch or "main",
            "token": token,
            "forms": configured_forms,
            "api_url": api_url or DEFAULT_API_URL,
            "submissions_path": submissions_path or DEFAULT_SUBMISSIONS_PATH,
        }
    return {}


def editor_password_hash() -> Optional[str]:
    """Return the SHA-256 hex digest of the editor password, if configured."""

    value = _secret("editor_password_hash")
    return str(value) if value else None


def local_submissions_dir() -> Path:
    value = _secret("submissions_dir")
    return Path(value) if value else DEFAULT_LOCAL_SUBMISSIONS_DIR


__all__ = [
    "DEFAULT_API_URL",
    "DEFAULT_LOCAL_SUBMISSIONS_DIR",
    "DEFAULT_REMOTE_SCHEMA_PATH",
    "DEFAULT_SUBMISSIONS_PATH",
    "editor_password_hash",
    "github_settings",
    "local_submissions_dir",
]
