import pytest

from potion.schemas import Filter, PropertyDefinition, Row, Sort
from potion.services.query import (
    ValueKind,
    apply_view,
    compare_values,
    filter_rows,
    matches_filter,
    resolve_value,
    sort_rows,
)

TS = "2025-01-01T00:00:00+00:00"

PROPERTIES = [
    PropertyDefinition(id="amount", name="Amount", type="number"),
    PropertyDefinition(id="done", name="Done", type="checkbox"),
    PropertyDefinition(id="tags", name="Tags", type="multiSelect", options=[]),
    PropertyDefinition(id="due", name="Due", type="date"),
    PropertyDefinition(id="status", name="Status", type="text"),
]


def make_row(row_id, **values):
    return Row(
        id=row_id,
        database_page_id="db",
        page_id=f"page-{row_id}",
        values=values,
        created_at=TS,
        updated_at=TS,
    )


def ids(rows):
    return [row.id for row in rows]


# ============================================
# Filters
# ============================================

def test_numeric_filter_keeps_input_order():
    rows = [make_row("r5", amount=5), make_row("r15", amount=15), make_row("r25", amount=25)]
    result = filter_rows(rows, [Filter(property_id="amount", operator="gt", value=10)], PROPERTIES)
    assert ids(result) == ["r15", "r25"]


@pytest.mark.parametrize(
    "operator, expected",
    [
        ("equals", ["r15"]),
        ("notEquals", ["r5", "r25"]),
        ("gte", ["r15", "r25"]),
        ("lt", ["r5"]),
        ("lte", ["r5", "r15"]),
    ],
)
def test_numeric_operators(operator, expected):
    rows = [make_row("r5", amount=5), make_row("r15", amount=15), make_row("r25", amount=25)]
    result = filter_rows(rows, [Filter(property_id="amount", operator=operator, value=15)], PROPERTIES)
    assert ids(result) == expected


def test_numeric_string_filter_value_is_coerced():
    rows = [make_row("r5", amount=5), make_row("r15", amount=15)]
    result = filter_rows(rows, [Filter(property_id="amount", operator="gt", value="10")], PROPERTIES)
    assert ids(result) == ["r15"]


def test_is_empty_ignores_declared_type():
    rows = [
        make_row("none", status=None),
        make_row("blank", status=""),
        make_row("list", status=[]),
        make_row("missing"),
        make_row("text", status="x"),
    ]
    empty = filter_rows(rows, [Filter(property_id="status", operator="isEmpty")], PROPERTIES)
    not_empty = filter_rows(rows, [Filter(property_id="status", operator="isNotEmpty")], PROPERTIES)
    assert ids(empty) == ["none", "blank", "list", "missing"]
    assert ids(not_empty) == ["text"]


def test_checkbox_equality_is_by_identity():
    rows = [make_row("yes", done=True), make_row("no", done=False), make_row("string", done="true")]
    equals = filter_rows(rows, [Filter(property_id="done", operator="equals", value=True)], PROPERTIES)
    not_equals = filter_rows(rows, [Filter(property_id="done", operator="notEquals", value=True)], PROPERTIES)
    assert ids(equals) == ["yes"]
    assert ids(not_equals) == ["no", "string"]


def test_multi_select_membership():
    rows = [make_row("ab", tags=["a", "b"]), make_row("b", tags=["b"]), make_row("none", tags=[])]
    contains = filter_rows(rows, [Filter(property_id="tags", operator="contains", value="a")], PROPERTIES)
    not_contains = filter_rows(rows, [Filter(property_id="tags", operator="notContains", value="a")], PROPERTIES)
    assert ids(contains) == ["ab"]
    assert ids(not_contains) == ["b", "none"]


def test_date_relational_filters_skip_unparsable_values():
    rows = [
        make_row("jan", due="2025-01-10"),
        make_row("feb", due="2025-02-01"),
        make_row("junk", due="not a date"),
        make_row("empty", due=None),
    ]
    after = filter_rows(rows, [Filter(property_id="due", operator="gt", value="2025-01-15")], PROPERTIES)
    before = filter_rows(rows, [Filter(property_id="due", operator="lte", value="2025-01-10")], PROPERTIES)
    assert ids(after) == ["feb"]
    assert ids(before) == ["jan"]


def test_relational_filter_with_unparsable_value_does_not_match():
    rows = [make_row("r", due="2025-01-10")]
    assert filter_rows(rows, [Filter(property_id="due", operator="gt", value="soon")], PROPERTIES) == []


def test_string_comparison_is_case_insensitive():
    flt = Filter(property_id="status", operator="equals", value="hello")
    assert matches_filter("Hello", flt, "text")
    assert matches_filter("HELLO world", Filter(property_id="status", operator="contains", value="ell"), "text")
    assert matches_filter("abc", Filter(property_id="status", operator="notContains", value="X"), "text")
    assert not matches_filter("Hello", Filter(property_id="status", operator="notEquals", value="HELLO"), "text")


def test_mismatched_shape_falls_back_to_strings():
    # a number property holding a string
    rows = [make_row("r", amount="15")]
    assert ids(filter_rows(rows, [Filter(property_id="amount", operator="equals", value=15)], PROPERTIES)) == ["r"]
    assert filter_rows(rows, [Filter(property_id="amount", operator="gt", value=10)], PROPERTIES) == []


def test_filters_are_combined_with_and():
    rows = [
        make_row("a", amount=20, done=True),
        make_row("b", amount=20, done=False),
        make_row("c", amount=1, done=True),
    ]
    filters = [
        Filter(property_id="amount", operator="gt", value=10),
        Filter(property_id="done", operator="equals", value=True),
    ]
    assert ids(filter_rows(rows, filters, PROPERTIES)) == ["a"]


def test_title_filter_reads_resolved_title():
    rows = [make_row("r1"), make_row("r2", title="zzz")]
    titles = {"r1": "Alpha", "r2": "Beta"}
    assert ids(filter_rows(rows, [Filter(property_id="title", operator="contains", value="alp")], PROPERTIES, titles)) == ["r1"]
    assert filter_rows(rows, [Filter(property_id="title", operator="equals", value="zzz")], PROPERTIES, titles) == []


def test_filtering_is_idempotent():
    rows = [make_row(str(i), amount=i, status="odd" if i % 2 else "even") for i in range(10)]
    filters = [
        Filter(property_id="amount", operator="gte", value=3),
        Filter(property_id="status", operator="equals", value="ODD"),
    ]
    once = filter_rows(rows, filters, PROPERTIES)
    twice = filter_rows(once, filters, PROPERTIES)
    assert ids(once) == ids(twice) == ["3", "5", "7", "9"]


def test_resolve_value_tags_by_declared_type_and_shape():
    assert resolve_value("number", 5).kind is ValueKind.NUMBER
    assert resolve_value("number", "5").kind is ValueKind.TEXT
    assert resolve_value("date", "2025-01-01").kind is ValueKind.DATE
    assert resolve_value("date", "tomorrow").kind is ValueKind.TEXT
    assert resolve_value("checkbox", None).kind is ValueKind.EMPTY
    assert resolve_value("multiSelect", ["a"]).kind is ValueKind.MULTI_SELECT
    assert resolve_value(None, True).kind is ValueKind.CHECKBOX


# ============================================
# Sorts
# ============================================

def test_no_sorts_preserves_input_order():
    rows = [make_row("c", amount=3), make_row("a", amount=1), make_row("b", amount=2)]
    assert ids(sort_rows(rows, [])) == ["c", "a", "b"]
    assert ids(apply_view(rows, PROPERTIES)) == ["c", "a", "b"]


def test_ties_keep_input_order():
    rows = [make_row("first", amount=1), make_row("second", amount=1), make_row("third", amount=0)]
    assert ids(sort_rows(rows, [Sort(property_id="amount")])) == ["third", "first", "second"]


def test_nulls_sort_first_and_desc_negates():
    rows = [make_row("three", amount=3), make_row("none", amount=None), make_row("one", amount=1)]
    assert ids(sort_rows(rows, [Sort(property_id="amount", direction="asc")])) == ["none", "one", "three"]
    assert ids(sort_rows(rows, [Sort(property_id="amount", direction="desc")])) == ["three", "one", "none"]


def test_multi_key_sort_falls_through():
    rows = [
        make_row("b1", status="b", amount=1),
        make_row("a1", status="a", amount=1),
        make_row("b2", status="b", amount=2),
        make_row("a2", status="a", amount=2),
    ]
    sorts = [Sort(property_id="status"), Sort(property_id="amount", direction="desc")]
    assert ids(sort_rows(rows, sorts)) == ["a2", "a1", "b2", "b1"]


def test_sort_by_title_pseudo_property():
    rows = [make_row("r1", title="a"), make_row("r2", title="z")]
    titles = {"r1": "Zebra", "r2": "Apple"}
    assert ids(sort_rows(rows, [Sort(property_id="title")], titles)) == ["r2", "r1"]


def test_compare_values_rules():
    assert compare_values(None, None) == 0
    assert compare_values(None, 0) < 0
    assert compare_values(False, True) < 0
    assert compare_values(2, 10) < 0
    assert compare_values(["b"], ["a", "c"]) < 0
    assert compare_values(["b"], ["a"]) > 0
    assert compare_values("banana", "Apple") > 0
    # parsed as instants, not compared as text
    assert compare_values("2025-03-01T10:00:00+02:00", "2025-03-01T09:00:00+00:00") < 0


def test_apply_view_filters_then_sorts():
    rows = [make_row("r25", amount=25), make_row("r5", amount=5), make_row("r15", amount=15)]
    result = apply_view(
        rows,
        PROPERTIES,
        [Filter(property_id="amount", operator="gt", value=10)],
        [Sort(property_id="amount", direction="asc")],
    )
    assert ids(result) == ["r15", "r25"]
