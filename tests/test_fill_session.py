"""Tests for the live fill session that ties the interpreters together."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import pytest

from forma.errors import GroupLimitError, InvalidSelection, ReadOnlyFieldError, UnknownFieldError
from forma.fill_session import FillSession
from forma.form_store import load_local_form
from forma.navigation import ADVANCE, FINISH, JUMP
from forma.schema_model import parse_schema

REPO_ROOT = Path(__file__).resolve().parents[1]


def _document() -> Dict[str, Any]:
    return {
        "version": "1.0",
        "metadata": {"title": "Fill test"},
        "pages": [
            {
                "id": "P1",
                "title": "Start",
                "fields": [
                    {"id": "f_age", "type": "number", "name": "age", "required": True},
                    {"id": "f_city", "type": "text", "name": "city", "defaultValue": "Taipei"},
                    {
                        "id": "f_place",
                        "type": "cascadingselect",
                        "name": "place",
                        "required": True,
                        "properties": {
                            "levels": [{"label": "Country"}, {"label": "City"}],
                            "options": [
                                {"value": "tw", "children": [{"value": "taipei"}, {"value": "tainan"}]},
                                {"value": "jp", "children": [{"value": "tokyo"}]},
                            ],
                        },
                    },
                    {"id": "f_note", "type": "html", "name": "note", "properties": {"content": "<b>Hi</b>"}},
                ],
                "navigationRules": [
                    {"id": "r1", "fieldName": "age", "operator": "lt", "value": "18", "targetPageId": "P3"}
                ],
            },
            {
                "id": "P2",
                "title": "Household",
                "fields": [
                    {
                        "id": "f_members",
                        "type": "paneldynamic",
                        "name": "members",
                        "properties": {
                            "minItems": 1,
                            "maxItems": 2,
                            "fields": [{"id": "f_member_name", "type": "text", "name": "name", "required": True}],
                        },
                    },
                    {"id": "f_rent", "type": "number", "name": "rent", "defaultValue": 100},
                    {
                        "id": "f_total",
                        "type": "expression",
                        "name": "total",
                        "properties": {"formula": "{rent} * 12", "displayFormat": "currency", "precision": 0},
                    },
                    {"id": "f_locked", "type": "text", "name": "locked", "readOnly": True},
                ],
            },
            {"id": "P3", "title": "End", "fields": [{"id": "f_done", "type": "boolean", "name": "done"}]},
        ],
        "settings": {},
    }


def _session(**answers: Any) -> FillSession:
    return FillSession(parse_schema(_document()), answers)


def test_session_applies_defaults_and_computes():
    session = _session()

    assert session.current_page_id == "P1"
    assert session.answers["city"] == "Taipei"
    assert len(session.answers["members"]) == 1
    assert session.answers["total"] == 1200
    assert session.display_value("total") == "NT$1,200"


def test_existing_answers_win_over_defaults():
    session = _session(city="Tainan", rent=50)

    assert session.answers["city"] == "Tainan"
    assert session.answers["total"] == 600


def test_set_answer_recomputes_and_reports_changes():
    session = _session()

    changed = session.set_answer("rent", 10)

    assert changed == {"total": 120}
    assert session.value("total") == 120


def test_read_only_fields_cannot_be_written():
    session = _session()

    with pytest.raises(ReadOnlyFieldError):
        session.set_answer("total", 5)
    with pytest.raises(ReadOnlyFieldError):
        session.set_answer("locked", "x")
    with pytest.raises(UnknownFieldError):
        session.set_answer("nope", 1)


def test_cascade_selection_and_pruning():
    session = _session()

    session.select_cascade("place", 0, "tw")
    session.select_cascade("place", 1, "tainan")
    assert session.answers["place"] == ["tw", "tainan"]
    assert [node["value"] for node in session.cascade_options("place", 1)] == ["taipei", "tainan"]

    session.select_cascade("place", 0, "jp")
    assert session.answers["place"] == ["jp", ""]
    with pytest.raises(InvalidSelection):
        session.select_cascade("place", 1, "taipei")

    session.set_answer("place", ["tw", "osaka"])
    assert session.answers["place"] == ["tw", ""]


def test_group_operations_go_through_the_controller():
    session = _session()

    session.set_group_value("members", 0, "name", "Ann")
    session.add_group_item("members")
    assert session.value("members.0.name") == "Ann"
    assert session.value("members.1.name") == ""
    with pytest.raises(GroupLimitError):
        session.add_group_item("members")

    session.remove_group_item("members", 0)
    assert [item["name"] for item in session.answers["members"]] == [""]


def test_missing_required_per_page():
    session = _session()

    assert session.missing_required("P1") == ["age", "place"]
    assert session.missing_required("P2") == ["members.0.name"]

    session.set_answer("age", 30)
    session.select_cascade("place", 0, "tw")
    assert session.missing_required("P1") == ["place"]
    session.select_cascade("place", 1, "taipei")
    assert session.missing_required("P1") == []


def test_all_fields_required_setting():
    document = _document()
    document["settings"] = {"allFieldsRequired": True}
    session = FillSession(parse_schema(document))

    missing = session.missing_required("P2")

    assert "rent" not in missing
    assert "total" not in missing
    assert "locked" not in missing
    assert "members.0.name" in missing


def test_navigation_uses_rules_and_visited_stack():
    """Going back after a jump returns to the page actually shown before."""

    session = _session(age=12)

    assert session.next_page().kind == JUMP
    assert session.current_page_id == "P3"
    assert session.can_go_back()

    assert session.previous_page()
    assert session.current_page_id == "P1"
    assert not session.can_go_back()

    session.set_answer("age", 40)
    assert session.next_page().kind == ADVANCE
    assert session.current_page_id == "P2"
    session.next_page()
    assert session.next_page().kind == FINISH
    assert session.finished
    assert session.current_page_id == "P3"


def test_previous_after_finishing_reopens_the_last_page():
    session = _session(age=40)
    session.next_page()
    session.next_page()
    assert session.next_page().kind == FINISH

    assert session.previous_page()
    assert not session.finished
    assert session.current_page_id == "P3"

    assert session.previous_page()
    assert session.current_page_id == "P2"


def test_progress_counts_answerable_fields():
    session = _session()

    answered, total = session.progress()

    # age, city, place, rent, total, locked, done
    assert total == 7
    assert answered == 3

    session.set_answer("age", 20)
    assert session.progress()[0] == 4


def test_submission_snapshot_is_detached():
    session = _session()
    snapshot = session.submission_snapshot()

    snapshot["members"].append({"name": "ghost"})

    assert len(session.answers["members"]) == 1
    assert snapshot["total"] == 1200


def test_bundled_household_survey_runs():
    schema = load_local_form("household_survey", REPO_ROOT / "form_schemas")
    session = FillSession(schema)

    session.set_answer("age", 35)
    session.select_cascade("residence", 0, "tw")
    session.select_cascade("residence", 1, "taipei")
    session.select_cascade("residence", 2, "daan")
    session.set_answer("full_name", "Lin")

    assert session.missing_required() == ["members.0.name"]
    assert session.next_page().page_id == "page_household"

    session.set_answer("rent", 18000)
    session.set_answer("utilities", 1500)
    assert session.display_value("total_expenses") == "NT$19,500"
