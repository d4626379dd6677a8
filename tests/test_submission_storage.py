"""Tests for building and storing submissions."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from forma.schema_defaults import new_form_document
from forma.schema_model import parse_schema
from forma.submission_storage import (
    build_submission_payload,
    load_local_submissions,
    submission_storage_path,
    write_local_submission,
)


def _schema():
    return parse_schema(new_form_document("Intake"))


def test_payload_wraps_answers_with_metadata():
    payload = build_submission_payload(
        "intake",
        _schema(),
        {"age": 3, "members": [{"_id": "a", "name": "Ann"}]},
        submission_id="abc",
        submitted_at=datetime(2024, 1, 2, 3, 4, tzinfo=timezone.utc),
    )

    assert payload["id"] == "abc"
    assert payload["form_key"] == "intake"
    assert payload["form_title"] == "Intake"
    assert payload["schema_version"] == "1.0"
    assert payload["submitted_at"] == "2024-01-02T03:04:00+00:00"
    assert payload["answers"]["members"] == [{"_id": "a", "name": "Ann"}]


def test_payload_rejects_unserialisable_answers():
    with pytest.raises(TypeError):
        build_submission_payload("intake", _schema(), {"when": object()})


def test_storage_path_template():
    path = submission_storage_path("out/{form_key}/{submission_id}.json", form_key="f", submission_id="1")

    assert path == "out/f/1.json"
    with pytest.raises(KeyError):
        submission_storage_path("out/{unknown}.json", form_key="f", submission_id="1")


def test_local_submissions_are_listed_newest_first(tmp_path):
    older = build_submission_payload(
        "intake", _schema(), {}, submission_id="old", submitted_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
    )
    newer = build_submission_payload(
        "intake", _schema(), {}, submission_id="new", submitted_at=datetime(2024, 2, 1, tzinfo=timezone.utc)
    )
    other = build_submission_payload("other", _schema(), {}, submission_id="x")

    for payload in (older, newer, other):
        write_local_submission(payload, tmp_path)
    (tmp_path / "intake" / "broken.json").write_text("{", encoding="utf-8")

    assert [item["id"] for item in load_local_submissions(tmp_path, "intake")] == ["new", "old"]
    assert len(load_local_submissions(tmp_path)) == 3
    assert load_local_submissions(tmp_path / "missing") == []
