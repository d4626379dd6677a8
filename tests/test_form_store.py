"""Tests for the local form schema store."""

from __future__ import annotations

import json

import pytest

from forma.errors import SchemaParseError
from forma.form_store import (
    available_form_keys,
    discover_local_forms,
    forms_from_payloads,
    load_local_form,
    load_local_forms,
    resolve_remote_form_path,
    save_local_form,
    summarise_forms,
)
from forma.schema_defaults import new_form_document
from forma.schema_model import parse_schema


def _write(root, key, payload):
    target = root / key
    target.mkdir(parents=True)
    (target / "form_schema.json").write_text(
        payload if isinstance(payload, str) else json.dumps(payload), encoding="utf-8"
    )


def test_discovery_lists_directories_with_schema_files(tmp_path):
    _write(tmp_path, "beta", new_form_document("Beta"))
    _write(tmp_path, "alpha", new_form_document("Alpha"))
    (tmp_path / "empty").mkdir()

    assert list(discover_local_forms(tmp_path)) == ["alpha", "beta"]
    assert available_form_keys(tmp_path) == ["alpha", "beta"]
    assert discover_local_forms(tmp_path / "missing") == {}


def test_broken_files_are_skipped_when_loading_all(tmp_path, caplog):
    _write(tmp_path, "good", new_form_document("Good"))
    _write(tmp_path, "bad", "{nope")

    forms = load_local_forms(tmp_path)

    assert list(forms) == ["good"]
    assert "Skipping form bad" in caplog.text
    with pytest.raises(SchemaParseError):
        load_local_form("bad", tmp_path)
    with pytest.raises(SchemaParseError):
        load_local_form("unknown", tmp_path)


def test_save_then_load_round_trip(tmp_path):
    schema = parse_schema(new_form_document("Saved"))

    path = save_local_form("saved", schema, tmp_path)

    assert path == tmp_path / "saved" / "form_schema.json"
    assert load_local_form("saved", tmp_path).to_document() == schema.to_document()


def test_summaries(tmp_path):
    _write(tmp_path, "alpha", new_form_document("Alpha"))

    (summary,) = summarise_forms(tmp_path)

    assert summary.key == "alpha"
    assert summary.title == "Alpha"
    assert summary.page_count == 1
    assert summary.field_count == 0


@pytest.mark.parametrize(
    ("base_path", "expected"),
    [
        ("forms/{form_key}/schema.json", "forms/survey/schema.json"),
        ("forms/{form}.json", "forms/survey.json"),
        ("single.json", "single.json"),
        ("forms/", "forms/survey/form_schema.json"),
    ],
)
def test_resolve_remote_form_path(base_path, expected):
    assert resolve_remote_form_path(base_path, "survey") == expected


def test_forms_from_payloads_accepts_text_and_mappings():
    document = new_form_document("Remote")

    forms = forms_from_payloads({"a": document, "b": json.dumps(document)})

    assert forms["a"].title == forms["b"].title == "Remote"
