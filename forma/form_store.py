"""Helpers for working with form schema files on disk."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from forma.errors import SchemaParseError
from forma.schema_model import FormSchema, dump_schema_json, load_schema_json, parse_schema

logger = logging.getLogger(__name__)

FORM_SCHEMA_FILENAME = "form_schema.json"
SCHEMAS_ROOT = Path("form_schemas")


@dataclass(frozen=True)
class FormSummary:
    """One row of the form listing."""

    key: str
    title: str
    description: str
    version: str
    page_count: int
    field_count: int
    path: Path


def discover_local_forms(root: Optional[Path] = None) -> Dict[str, Path]:
    """Return a mapping of ``form_key -> path`` for local schema files."""

    base = root or SCHEMAS_ROOT
    forms: Dict[str, Path] = {}
    if base.exists():
        for entry in sorted(base.iterdir()):
            if not entry.is_dir():
                continue
            schema_path = entry / FORM_SCHEMA_FILENAME
            if schema_path.exists():
                forms[entry.name] = schema_path
    return forms


def available_form_keys(root: Optional[Path] = None) -> List[str]:
    """Return the list of known form identifiers."""

    return list(discover_local_forms(root).keys())


def load_local_form(form_key: str, root: Optional[Path] = None) -> FormSchema:
    """Load and parse the schema stored for ``form_key``.

    Raises :class:`SchemaParseError` for unknown keys and malformed files.
    """

    path = discover_local_forms(root).get(form_key)
    if path is None:
        raise SchemaParseError(f"No schema file found for form '{form_key}'.")
    with path.open("r", encoding="utf-8") as handle:
        return load_schema_json(handle.read())


def load_local_forms(root: Optional[Path] = None) -> Dict[str, FormSchema]:
    """Load every local form, skipping (and logging) files that fail to parse."""

    forms: Dict[str, FormSchema] = {}
    for form_key, path in discover_local_forms(root).items():
        try:
            with path.open("r", encoding="utf-8") as handle:
                forms[form_key] = load_schema_json(handle.read())
        except (OSError, SchemaParseError) as exc:
            logger.warning("Skipping form %s at %s: %s", form_key, path, exc)
    return forms


def summarise_forms(root: Optional[Path] = None) -> List[FormSummary]:
    """Return a summary row for each readable local form."""

    sources = discover_local_forms(root)
    summaries: List[FormSummary] = []
    for form_key, schema in load_local_forms(root).items():
        summaries.append(
            FormSummary(
                key=form_key,
                title=schema.title or form_key,
                description=str(schema.metadata.get("description") or ""),
                version=schema.version,
                page_count=len(schema.pages),
                field_count=len(schema.fields),
                path=sources[form_key],
            )
        )
    return summaries


def ensure_form_directory(form_key: str, root: Optional[Path] = None) -> Path:
    """Ensure the directory for ``form_key`` exists and return it."""

    target_dir = (root or SCHEMAS_ROOT) / form_key
    target_dir.mkdir(parents=True, exist_ok=True)
    return target_dir


def local_form_path(form_key: str, root: Optional[Path] = None) -> Path:
    """Return the on-disk path for ``form_key``."""

    known = discover_local_forms(root)
    if form_key in known:
        return known[form_key]
    return ensure_form_directory(form_key, root) / FORM_SCHEMA_FILENAME


def save_local_form(form_key: str, schema: FormSchema, root: Optional[Path] = None) -> Path:
    """Write ``schema`` to the local store and return the file path."""

    path = local_form_path(form_key, root)
    path.write_text(dump_schema_json(schema) + "\n", encoding="utf-8")
    logger.info("Saved form %s to %s", form_key, path)
    return path


def resolve_remote_form_path(base_path: str, form_key: str) -> str:
    """Return the remote path for ``form_key`` using ``base_path`` template."""

    if "{form_key}" in base_path:
        return base_path.format(form_key=form_key)
    if "{form}" in base_path:
        return base_path.format(form=form_key)
    if base_path.endswith(".json"):
        return base_path
    return f"{base_path.rstrip('/')}/{form_key}/{FORM_SCHEMA_FILENAME}"


def forms_from_payloads(payloads: Mapping[str, Any]) -> Dict[str, FormSchema]:
    """Parse already-downloaded schema documents keyed by form."""

    forms: Dict[str, FormSchema] = {}
    for form_key, payload in payloads.items():
        if isinstance(payload, str):
            payload = json.loads(payload)
        forms[form_key] = parse_schema(payload)
    return forms


__all__ = [
    "FORM_SCHEMA_FILENAME",
    "FormSummary",
    "SCHEMAS_ROOT",
    "available_form_keys",
    "discover_local_forms",
    "ensure_form_directory",
    "forms_from_payloads",
    "load_local_form",
    "load_local_forms",
    "local_form_path",
    "resolve_remote_form_path",
    "save_local_form",
    "summarise_forms",
]
