"""Tests for the in-memory aggregation stages."""

import pytest

from groupify.features.analytics.pipeline import (
    Accumulator,
    AddToSet,
    Count,
    Max,
    Sum,
    first,
    group_by,
    match,
    sort_rows,
    unwind,
)


RECORDS = [
    {"user": "b", "n": 3, "tags": ["x", "y"]},
    {"user": "a", "n": 1, "tags": []},
    {"user": "b", "n": 4, "tags": ["x"]},
]


def test_match_filters_without_mutating_input():
    selected = match(RECORDS, lambda r: r["n"] > 2)
    assert [r["n"] for r in selected] == [3, 4]
    assert len(RECORDS) == 3


def test_unwind_drops_parents_with_empty_lists():
    pairs = unwind(RECORDS, lambda r: r["tags"])
    assert [(p["user"], tag) for p, tag in pairs] == [("b", "x"), ("b", "y"), ("b", "x")]


def test_group_by_keeps_first_seen_key_order():
    rows = group_by(
        RECORDS,
        key=lambda r: r["user"],
        accumulators={
            "count": Count(),
            "total": Sum(lambda r: r["n"]),
            "top": Max(lambda r: r["n"]),
            "tags": AddToSet(lambda r: len(r["tags"])),
        },
    )
    assert [row.key for row in rows] == ["b", "a"]
    assert rows[0]["count"] == 2
    assert rows[0]["total"] == 7
    assert rows[0]["top"] == 4
    assert rows[0]["tags"] == [2, 1]
    assert rows[1]["tags"] == [0]


def test_group_by_over_nothing_is_empty():
    assert group_by([], key=lambda r: r, accumulators={"count": Count()}) == []


def test_sort_and_first():
    rows = group_by(RECORDS, key=lambda r: r["user"], accumulators={"total": Sum(lambda r: r["n"])})
    ordered = sort_rows(rows, key=lambda row: row["total"])
    assert first(ordered).key == "a"
    assert first([]) is None


def test_accumulator_requires_start_and_add():
    with pytest.raises(TypeError):
        Accumulator()

    class StartOnly(Accumulator):
        def start(self):
            return 0

    with pytest.raises(TypeError):
        StartOnly()


def test_custom_accumulator_plugs_into_group_by():
    class Longest(Accumulator):
        def start(self):
            return 0

        def add(self, acc, record):
            return max(acc, len(record["tags"]))

        def finish(self, acc):
            return f"{acc} tags"

    rows = group_by(RECORDS, key=lambda r: r["user"], accumulators={"longest": Longest()})
    assert [(row.key, row["longest"]) for row in rows] == [("b", "2 tags"), ("a", "0 tags")]
