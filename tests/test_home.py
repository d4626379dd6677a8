"""Tests for the home page form listing."""

from __future__ import annotations

import importlib

from forma.schema_defaults import new_form_document
from forma.schema_model import parse_schema


def test_build_forms_table_counts_submissions():
    home = importlib.import_module("Home")
    forms = {
        "zeta": parse_schema(new_form_document("Zeta")),
        "alpha": parse_schema(new_form_document("Alpha")),
    }
    submissions = [{"form_key": "alpha"}, {"form_key": "alpha"}, {"form_key": "other"}]

    table = home.build_forms_table(forms, submissions)

    assert list(table.columns) == list(home.TABLE_COLUMNS)
    assert table["Form"].tolist() == ["alpha", "zeta"]
    assert table["Submissions"].tolist() == [2, 0]
    assert table["Pages"].tolist() == [1, 1]


def test_remote_forms_skip_failures(monkeypatch):
    home = importlib.import_module("Home")

    def fake_load(settings, form_key):
        if form_key == "broken":
            raise ValueError("Unsupported encoding: utf-16")
        return parse_schema(new_form_document(form_key))

    monkeypatch.setattr(home, "load_remote_form", fake_load)

    forms = home._load_remote_forms({"forms": ["good", "broken"]})

    assert list(forms) == ["good"]
