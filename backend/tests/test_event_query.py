import pytest

from personaflow.services.event_store import EventQuery


def test_group_by_fields_are_validated():
    EventQuery(group_by=("visitor_hash", "target_id"))
    with pytest.raises(ValueError):
        EventQuery(group_by=("post_title",))


def test_order_by_is_validated():
    with pytest.raises(ValueError):
        EventQuery(order_by="random")


def test_min_count_requires_grouping():
    with pytest.raises(ValueError):
        EventQuery(min_count=10)
    assert EventQuery(group_by=("visitor_hash",), min_count=10).min_count == 10
