"""Tests for the multi-level dependent dropdowns."""

from __future__ import annotations

import pytest

from forma.cascading import (
    is_complete,
    is_level_enabled,
    is_satisfied,
    normalise_selections,
    options_for_level,
    prune_selections,
    select,
    selection_labels,
)
from forma.errors import InvalidSelection
from forma.schema_model import FormField

TREE = [
    {
        "value": "tw",
        "label": "Taiwan",
        "children": [
            {
                "value": "taipei",
                "label": "Taipei",
                "children": [{"value": "daan", "label": "Da'an"}, {"value": "xinyi", "label": "Xinyi"}],
            },
            {
                "value": "kaohsiung",
                "label": "Kaohsiung",
                "children": [{"value": "lingya", "label": "Lingya"}],
            },
        ],
    },
    {"value": "jp", "label": "Japan", "children": [{"value": "tokyo", "label": "Tokyo", "children": []}]},
]


def _field(**flags) -> FormField:
    data = {
        "id": "f_place",
        "type": "cascadingselect",
        "name": "place",
        "properties": {
            "levels": [{"label": "Country"}, {"label": "City"}, {"label": "District"}],
            "options": TREE,
        },
    }
    data.update(flags)
    return FormField(data=data)


def _values(nodes):
    return [node["value"] for node in nodes]


def test_selecting_taipei_exposes_its_districts():
    field = _field()

    selections = select(field, [], 0, "tw")
    selections = select(field, selections, 1, "taipei")

    assert _values(options_for_level(TREE, selections, 2)) == ["daan", "xinyi"]


def test_changing_a_level_clears_deeper_levels():
    field = _field()
    selections = ["tw", "taipei", "daan"]

    assert select(field, selections, 0, "jp") == ["jp", "", ""]
    assert select(field, selections, 1, "kaohsiung") == ["tw", "kaohsiung", ""]
    assert select(field, selections, 1, "") == ["tw", "", ""]


def test_options_for_level_without_parent_selection_is_empty():
    assert _values(options_for_level(TREE, [], 0)) == ["tw", "jp"]
    assert options_for_level(TREE, [], 1) == []
    assert options_for_level(TREE, ["xx"], 1) == []
    assert options_for_level(TREE, ["tw", ""], 2) == []


def test_select_rejects_unknown_values_and_locked_levels():
    field = _field()

    with pytest.raises(InvalidSelection):
        select(field, [], 0, "fr")
    with pytest.raises(InvalidSelection):
        select(field, [], 1, "taipei")
    with pytest.raises(InvalidSelection):
        select(field, ["tw"], 1, "tokyo")
    with pytest.raises(InvalidSelection):
        select(field, [], 3, "anything")


def test_level_enablement():
    field = _field()

    assert is_level_enabled(field, [], 0)
    assert not is_level_enabled(field, [], 1)
    assert is_level_enabled(field, ["tw"], 1)
    assert not is_level_enabled(_field(disabled=True), [], 0)
    assert not is_level_enabled(_field(readOnly=True), ["tw"], 1)


def test_prune_cuts_at_first_stale_level():
    field = _field()

    assert prune_selections(field, ["tw", "osaka", "daan"]) == ["tw", "", ""]
    assert prune_selections(field, ["tw", "taipei", "xinyi"]) == ["tw", "taipei", "xinyi"]
    assert prune_selections(field, ["gone"]) == [""]


def test_required_validation_needs_every_level():
    required = _field(required=True)

    assert not is_satisfied(required, ["tw", "taipei", ""])
    assert is_satisfied(required, ["tw", "taipei", "daan"])
    assert is_satisfied(_field(), [])
    assert not is_complete(_field(), ["tw"])


def test_labels_and_normalisation():
    field = _field()

    assert selection_labels(field, ["tw", "taipei", "daan"]) == ["Taiwan", "Taipei", "Da'an"]
    assert normalise_selections("tw") == ["tw"]
    assert normalise_selections(None) == []
    assert normalise_selections(["tw", None]) == ["tw", ""]
