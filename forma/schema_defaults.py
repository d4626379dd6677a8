"""Default values shared between the form runner and the editor."""

from __future__ import annotations

from typing import Any, Dict
import uuid

DEFAULT_SCHEMA_VERSION = "1.0"
DEFAULT_FORM_TITLE = "Untitled form"
DEFAULT_PAGE_TITLE = "Page"
DEFAULT_SUBMIT_LABEL = "Submit"
DEFAULT_SUBMIT_SUCCESS_MESSAGE = "Thank you, your response has been recorded."
UNSELECTED_LABEL = "— Select an option —"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "allFieldsRequired": False,
    "showProgressBar": True,
    "displayMode": {"default": "classic"},
    "allowPreviousDefault": True,
}

DEFAULT_EXPRESSION_PRECISION = 2
DEFAULT_EXPRESSION_FORMAT = "number"
CURRENCY_PREFIX = "NT$"

DEFAULT_MIN_ITEMS = 0
DEFAULT_MAX_ITEMS = 100
DEFAULT_ITEM_LABEL = "Item"
DEFAULT_ADD_ITEM_LABEL = "Add item"

UNDO_HISTORY_LIMIT = 100


def generate_id(prefix: str) -> str:
    """Return a short random identifier such as ``field_1a2b3c4d5``."""

    return f"{prefix}_{uuid.uuid4().hex[:9]}"


def default_settings() -> Dict[str, Any]:
    """Return a mutable copy of the default form settings."""

    settings = dict(DEFAULT_SETTINGS)
    settings["displayMode"] = dict(DEFAULT_SETTINGS["displayMode"])
    return settings


def new_page_document(title: str = DEFAULT_PAGE_TITLE) -> Dict[str, Any]:
    """Return the document for an empty page."""

    return {
        "id": generate_id("page"),
        "title": title,
        "description": "",
        "fields": [],
    }


def new_form_document(title: str = DEFAULT_FORM_TITLE) -> Dict[str, Any]:
    """Return the document for a new single-page form."""

    return {
        "version": DEFAULT_SCHEMA_VERSION,
        "metadata": {"title": title, "description": ""},
        "pages": [new_page_document(f"{DEFAULT_PAGE_TITLE} 1")],
        "settings": default_settings(),
    }
