"""Tests for repeatable dynamic panels and dynamic matrices."""

from __future__ import annotations

import pytest

from forma.dynamic_groups import ITEM_ID_KEY, DynamicGroupController, template_entries
from forma.errors import GroupLimitError
from forma.schema_model import FormField, parse_schema


def _panel(**overrides) -> FormField:
    properties = {
        "minItems": 1,
        "maxItems": 3,
        "itemLabel": "Member",
        "fields": [
            {"id": "f_name", "type": "text", "name": "name", "required": True},
            {"id": "f_age", "type": "number", "name": "age", "defaultValue": 0},
        ],
    }
    properties.update(overrides.pop("properties", {}))
    data = {"id": "f_members", "type": "paneldynamic", "name": "members", "properties": properties}
    data.update(overrides)
    return FormField(data=data)


def test_bounds_are_enforced():
    """With min=1 and max=3, adding stops at three items and removing at one."""

    controller = DynamicGroupController(_panel())
    items = controller.ensure_minimum([])
    assert len(items) == 1

    items = controller.add_item(items)
    items = controller.add_item(items)
    assert len(items) == 3
    with pytest.raises(GroupLimitError):
        controller.add_item(items)

    items = controller.remove_item(items, 0)
    items = controller.remove_item(items, 0)
    assert len(items) == 1
    with pytest.raises(GroupLimitError):
        controller.remove_item(items, 0)


def test_remove_rejects_out_of_range_index():
    controller = DynamicGroupController(_panel())
    items = controller.add_item(controller.ensure_minimum([]))

    with pytest.raises(GroupLimitError):
        controller.remove_item(items, 5)


def test_new_items_carry_defaults_and_fresh_ids():
    controller = DynamicGroupController(_panel())

    items = controller.add_item(controller.add_item([]))

    assert items[0]["name"] == ""
    assert items[0]["age"] == 0
    assert items[0][ITEM_ID_KEY] != items[1][ITEM_ID_KEY]


def test_operations_return_new_lists():
    controller = DynamicGroupController(_panel())
    items = controller.ensure_minimum([])

    updated = controller.set_value(items, 0, "name", "Ann")

    assert updated[0]["name"] == "Ann"
    assert items[0]["name"] == ""


def test_set_value_rejects_unknown_child_and_locked_group():
    controller = DynamicGroupController(_panel())
    items = controller.ensure_minimum([])

    with pytest.raises(GroupLimitError):
        controller.set_value(items, 0, "nickname", "x")
    with pytest.raises(GroupLimitError):
        DynamicGroupController(_panel(readOnly=True)).set_value(items, 0, "name", "x")


def test_paths_are_unique_after_removal():
    """Items are renumbered by position so synthesized names never collide."""

    controller = DynamicGroupController(_panel())
    items = controller.add_item(controller.add_item(controller.ensure_minimum([])))
    items = controller.remove_item(items, 1)

    rows = controller.instantiate(items)
    names = [field.name for row in rows for field in row]
    ids = [field.id for row in rows for field in row]

    assert names == ["members.0.name", "members.0.age", "members.1.name", "members.1.age"]
    assert ids[0] == "f_members-0-f_name"
    assert len(set(names)) == len(names)
    assert len(set(ids)) == len(ids)


def test_flatten_and_missing_required():
    controller = DynamicGroupController(_panel())
    items = [{"_id": "a", "name": "Ann", "age": 40}, {"_id": "b", "name": "", "age": 3}]

    assert dict(controller.flatten(items))["members.1.age"] == 3
    assert controller.missing_required(items) == ["members.1.name"]
    assert controller.missing_required(items, force_required=True) == ["members.1.name"]


def test_matrix_dynamic_uses_columns_and_row_bounds():
    matrix = FormField(
        data={
            "id": "f_costs",
            "type": "matrixdynamic",
            "name": "costs",
            "properties": {
                "minRowCount": 2,
                "maxRowCount": 2,
                "columns": [
                    {"name": "item", "label": "Item", "cellType": "text"},
                    {"name": "amount", "label": "Amount", "cellType": "number"},
                ],
            },
        }
    )
    controller = DynamicGroupController(matrix)

    items = controller.ensure_minimum([])

    assert controller.child_names == ["item", "amount"]
    assert len(items) == 2
    assert not controller.can_add(items)
    assert not controller.can_remove(items)


def test_panel_template_read_from_schema_arena():
    schema = parse_schema(
        {
            "version": "1.0",
            "pages": [{"id": "p1", "fields": [_panel().data]}],
        }
    )

    entries = template_entries(schema.fields["f_members"], schema)

    assert [entry.name for entry in entries] == ["name", "age"]


def test_non_group_field_is_refused():
    with pytest.raises(ValueError):
        DynamicGroupController(FormField(data={"id": "x", "type": "text", "name": "x"}))
