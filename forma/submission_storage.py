"""Building and storing submitted answer snapshots."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from forma.schema_model import FormSchema

logger = logging.getLogger(__name__)


def new_submission_id() -> str:
    return uuid.uuid4().hex


def build_submission_payload(
    form_key: str,
    schema: FormSchema,
    answers: Mapping[str, Any],
    *,
    submission_id: Optional[str] = None,
    submitted_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Wrap an answer snapshot with the metadata stored alongside it.

    Raises :class:`TypeError` when the answers cannot be serialised as JSON.
    """

    serialisable_answers = json.loads(json.dumps(dict(answers), ensure_ascii=False))
    timestamp = submitted_at or datetime.now(timezone.utc)
    return {
        "id": submission_id or new_submission_id(),
        "form_key": form_key,
        "form_title": schema.title or form_key,
        "schema_version": schema.version,
        "submitted_at": timestamp.isoformat(),
        "answers": serialisable_answers,
    }


def submission_storage_path(template: str, *, form_key: str, submission_id: str) -> str:
    """Format a storage path for a submission.

    ``template`` may use ``{form_key}`` and ``{submission_id}``; any other
    placeholder raises :class:`KeyError`.
    """

    return template.format(form_key=form_key, submission_id=submission_id)


def write_local_submission(payload: Mapping[str, Any], directory: Path) -> Path:
    """Store ``payload`` as ``<directory>/<form_key>/<id>.json``."""

    target_dir = directory / str(payload.get("form_key") or "unknown")
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / f"{payload['id']}.json"
    with path.open("w", encoding="utf-8") as handle:
        json.dump(dict(payload), handle, indent=2, ensure_ascii=False)
    logger.info("Stored submission %s at %s", payload["id"], path)
    return path


def load_local_submissions(directory: Path, form_key: Optional[str] = None) -> List[Dict[str, Any]]:
    """Return stored submissions, newest first; unreadable files are skipped."""

    if not directory.exists():
        return []
    pattern = f"{form_key}/*.json" if form_key else "*/*.json"
    submissions: List[Dict[str, Any]] = []
    for candidate in directory.glob(pattern):
        try:
            with candidate.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable submission %s: %s", candidate, exc)
            continue
        if isinstance(payload, dict):
            submissions.append(payload)
    submissions.sort(key=lambda item: str(item.get("submitted_at") or ""), reverse=True)
    return submissions


__all__ = [
    "build_submission_payload",
    "load_local_submissions",
    "new_submission_id",
    "submission_storage_path",
    "write_local_submission",
]
