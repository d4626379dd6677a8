"""Schema and submission storage through GitHub's Contents API."""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from forma.config import DEFAULT_API_URL
from forma.form_store import resolve_remote_form_path
from forma.schema_model import FormSchema, parse_schema, serialize_schema

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 10


@dataclass
class GitHubBackend:
    """GitHub Contents API wrapper for reading and writing one JSON file."""

    token: str
    repo: str
    path: str
    branch: str = "main"
    api_url: str = DEFAULT_API_URL

    def _headers(self) -> Dict[str, str]:
        """Build request headers for the GitHub API."""

        headers = {
            "Accept": "application/vnd.github+json",
            "Content-Type": "application/json",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _url(self) -> str:
        """Construct the contents URL for the configured repository."""

        return f"{self.api_url.rstrip('/')}/repos/{self.repo}/contents/{self.path}"

    def get_file_sha(self) -> Optional[str]:
        """Retrieve the SHA of the target file if it exists."""

        response = requests.get(
            self._url(),
            headers=self._headers(),
            params={"ref": self.branch},
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json().get("sha")

    def read_json(self) -> Any:
        """Read a JSON file from GitHub and return its decoded contents."""

        response = requests.get(
            self._url(),
            headers=self._headers(),
            params={"ref": self.branch},
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        payload = response.json()
        encoding = payload.get("encoding", "base64")
        if encoding != "base64":
            raise ValueError(f"Unsupported encoding: {encoding}")
        decoded = base64.b64decode(payload.get("content", "")).decode("utf-8")
        return json.loads(decoded)

    def write_json(self, data: Any, message: str) -> Dict[str, Any]:
        """Create or replace the file with ``data`` serialised as JSON."""

        body = json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")
        payload: Dict[str, Any] = {
            "message": message,
            "branch": self.branch,
            "content": base64.b64encode(body).decode("utf-8"),
        }
        sha = self.get_file_sha()
        if sha:
            payload["sha"] = sha

        response = requests.put(
            self._url(),
            headers=self._headers(),
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        logger.info("Wrote %s to %s@%s", self.path, self.repo, self.branch)
        return response.json()


def backend_for(settings: Dict[str, Any], path: str) -> GitHubBackend:
    """Return a backend for ``path`` using the configured repository."""

    return GitHubBackend(
        token=settings.get("token") or "",
        repo=settings["repo"],
        path=path,
        branch=settings.get("branch") or "main",
        api_url=settings.get("api_url") or DEFAULT_API_URL,
    )


def load_remote_form(settings: Dict[str, Any], form_key: str) -> FormSchema:
    """Download and parse the schema stored for ``form_key``."""

    backend = backend_for(settings, resolve_remote_form_path(settings["path"], form_key))
    return parse_schema(backend.read_json())


def save_remote_form(settings: Dict[str, Any], form_key: str, schema: FormSchema) -> Dict[str, Any]:
    """Commit ``schema`` as the stored document for ``form_key``."""

    backend = backend_for(settings, resolve_remote_form_path(settings["path"], form_key))
    title = schema.title or form_key
    return backend.write_json(serialize_schema(schema), message=f"Update form schema '{title}'")


__all__ = [
    "GitHubBackend",
    "backend_for",
    "load_remote_form",
    "save_remote_form",
]
