"""Tests for the fill page helpers."""

from __future__ import annotations

import importlib
import json
from types import SimpleNamespace

import pandas as pd
import requests

from forma.schema_defaults import new_form_document
from forma.schema_model import FormField, parse_schema


def _fill_page():
    return importlib.import_module("pages.01_Fill_Form")


def _dummy_backend(captured):
    class DummyBackend:
        def __init__(
            self,
            *,
            token: str,
            repo: str,
            path: str,
            branch: str = "main",
            api_url: str = "https://api.github.com",
        ) -> None:
            captured["init"] = {
                "token": token,
                "repo": repo,
                "path": path,
                "branch": branch,
                "api_url": api_url,
            }

        def write_json(self, data, message):
            captured["payload"] = data
            captured["message"] = message
            return {"ok": True}

    return DummyBackend


def test_store_submission_writes_local_copy_and_github(monkeypatch, tmp_path):
    """Submissions are stored on disk and sent to GitHub with a generated id."""

    fill_page = _fill_page()
    captured = {}
    settings = {
        "token": "secret-token",
        "repo": "example/repo",
        "branch": "main",
        "api_url": "https://enterprise.example/api/v3",
        "submissions_path": "answers/{form_key}/{submission_id}.json",
    }

    monkeypatch.setattr(fill_page, "GitHubBackend", _dummy_backend(captured))
    monkeypatch.setattr(fill_page, "github_settings", lambda: settings)
    monkeypatch.setattr(fill_page, "local_submissions_dir", lambda: tmp_path)
    submission_module = importlib.import_module("forma.submission_storage")
    monkeypatch.setattr(submission_module.uuid, "uuid4", lambda: SimpleNamespace(hex="def456"))

    errors = []
    monkeypatch.setattr(fill_page.st, "error", lambda message: errors.append(message))

    schema = parse_schema(new_form_document("Intake"))
    submission_id = fill_page.store_submission("intake", schema, {"age": 10})

    assert submission_id == "def456"
    assert captured["init"]["path"] == "answers/intake/def456.json"
    assert captured["init"]["api_url"] == "https://enterprise.example/api/v3"
    assert captured["payload"]["answers"] == {"age": 10}
    assert "def456" in captured["message"]
    assert errors == []
    stored = json.loads((tmp_path / "intake" / "def456.json").read_text(encoding="utf-8"))
    assert stored["answers"] == {"age": 10}


def test_store_submission_without_github_keeps_local_copy(monkeypatch, tmp_path):
    fill_page = _fill_page()

    monkeypatch.setattr(fill_page, "github_settings", lambda: {})
    monkeypatch.setattr(fill_page, "local_submissions_dir", lambda: tmp_path)

    submission_id = fill_page.store_submission("intake", parse_schema(new_form_document("Intake")), {})

    assert (tmp_path / "intake" / f"{submission_id}.json").exists()


def test_store_submission_reports_github_failure(monkeypatch, tmp_path):
    fill_page = _fill_page()

    class FailingBackend:
        def __init__(self, **kwargs):
            pass

        def write_json(self, data, message):
            raise requests.ConnectionError("offline")

    monkeypatch.setattr(fill_page, "GitHubBackend", FailingBackend)
    monkeypatch.setattr(
        fill_page,
        "github_settings",
        lambda: {"token": "t", "repo": "r/r", "submissions_path": "s/{submission_id}.json"},
    )
    monkeypatch.setattr(fill_page, "local_submissions_dir", lambda: tmp_path)
    errors = []
    monkeypatch.setattr(fill_page.st, "error", lambda message: errors.append(message))

    assert fill_page.store_submission("intake", parse_schema(new_form_document("Intake")), {}) is None
    assert errors and "offline" in errors[0]


def test_store_submission_rejects_bad_path_template(monkeypatch, tmp_path):
    fill_page = _fill_page()
    monkeypatch.setattr(
        fill_page,
        "github_settings",
        lambda: {"token": "t", "repo": "r/r", "submissions_path": "s/{oops}.json"},
    )
    monkeypatch.setattr(fill_page, "local_submissions_dir", lambda: tmp_path)
    errors = []
    monkeypatch.setattr(fill_page.st, "error", lambda message: errors.append(message))

    assert fill_page.store_submission("intake", parse_schema(new_form_document("Intake")), {}) is None
    assert "oops" in errors[0]


def test_field_options_accepts_mappings_and_plain_values():
    fill_page = _fill_page()
    item = FormField(
        data={
            "id": "f",
            "type": "select",
            "name": "colour",
            "properties": {
                "options": [
                    {"value": "r", "label": "Red"},
                    {"value": "g", "label": "Green", "disabled": True},
                    "blue",
                ]
            },
        }
    )

    assert fill_page.field_options(item) == [
        {"value": "r", "label": "Red"},
        {"value": "blue", "label": "blue"},
    ]


def test_changed_cells_reports_edited_values():
    fill_page = _fill_page()
    before = pd.DataFrame([{"item": "Rent", "amount": 10}, {"item": None, "amount": None}])
    after = pd.DataFrame([{"item": "Rent", "amount": 12}, {"item": "Food", "amount": None}])

    assert fill_page.changed_cells(before, after) == [(0, "amount", 12), (1, "item", "Food")]
