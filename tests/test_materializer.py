"""Tests for ClusterMaterializer and the consolidated view builder."""

from datetime import datetime, timedelta, timezone

import pytest

from reconcile.application import (
    ClusterMaterializer,
    ConsistencyError,
    build_consolidated_view,
)
from reconcile.domain import Contact, LinkPrecedence
from reconcile.infrastructure import InMemoryContactStore

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _contact(contact_id, linked_id=None, seconds=0, email=None, phone=None) -> Contact:
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone,
        linked_id=linked_id,
        link_precedence=LinkPrecedence.PRIMARY if linked_id is None else LinkPrecedence.SECONDARY,
        created_at=T0 + timedelta(seconds=seconds),
        updated_at=T0 + timedelta(seconds=seconds),
    )


def _materialize(contacts, primary_id, **kwargs) -> list[Contact]:
    store = InMemoryContactStore()
    for c in contacts:
        store.add(c)
    with store.transaction(None, None) as tx:
        return ClusterMaterializer(tx, **kwargs).materialize(primary_id)


def test_primary_first_then_secondaries_by_creation() -> None:
    contacts = [
        _contact(1, email="a"),
        _contact(4, linked_id=1, seconds=30, phone="3"),
        _contact(2, linked_id=1, seconds=10, phone="1"),
        _contact(3, linked_id=1, seconds=10, phone="2"),
        _contact(9, email="other"),
    ]
    assert [c.id for c in _materialize(contacts, 1)] == [1, 2, 3, 4]


def test_singleton_cluster() -> None:
    assert [c.id for c in _materialize([_contact(1, email="a")], 1)] == [1]


def test_missing_primary_raises() -> None:
    with pytest.raises(ConsistencyError):
        _materialize([_contact(1, email="a")], 42)


def test_secondary_root_raises() -> None:
    contacts = [_contact(1, email="a"), _contact(2, linked_id=1, phone="1")]
    with pytest.raises(ConsistencyError):
        _materialize(contacts, 2)


def test_nested_chain_within_guard_is_flattened() -> None:
    contacts = [
        _contact(1, email="a"),
        _contact(2, linked_id=1, seconds=5, phone="1"),
        _contact(3, linked_id=2, seconds=2, phone="2"),
    ]
    assert [c.id for c in _materialize(contacts, 1)] == [1, 3, 2]


def test_chain_deeper_than_guard_raises() -> None:
    contacts = [_contact(1, email="a")]
    contacts += [_contact(i, linked_id=i - 1, seconds=i, phone=str(i)) for i in range(2, 6)]
    assert len(_materialize(contacts, 1, max_depth=4)) == 5
    with pytest.raises(ConsistencyError):
        _materialize(contacts, 1, max_depth=3)


class _StubStore:
    """Returns children from a fixed map, including links back to ancestors."""

    def __init__(self, contacts, children) -> None:
        self._by_id = {c.id: c for c in contacts}
        self._children = children

    def get_by_id(self, contact_id):
        return self._by_id.get(contact_id)

    def list_linked_to(self, contact_id):
        return [self._by_id[i] for i in self._children.get(contact_id, [])]


def test_cycle_terminates() -> None:
    contacts = [
        _contact(1, email="a"),
        _contact(2, linked_id=1, seconds=1, phone="1"),
        _contact(3, linked_id=2, seconds=2, phone="2"),
    ]
    store = _StubStore(contacts, {1: [2], 2: [3, 1], 3: [2, 1]})

    cluster = ClusterMaterializer(store).materialize(1)

    assert [c.id for c in cluster] == [1, 2, 3]


def test_view_orders_and_deduplicates_first_seen() -> None:
    cluster = [
        _contact(3, linked_id=1, seconds=20, email="b", phone="p1"),
        _contact(1, email="a", phone="p2"),
        _contact(2, linked_id=1, seconds=10, email="b", phone=None),
        _contact(4, linked_id=1, seconds=30, email=None, phone="p2"),
    ]

    view = build_consolidated_view(cluster)

    assert view.primary_contact_id == 1
    assert view.emails == ["a", "b"]
    assert view.phone_numbers == ["p2", "p1"]
    assert view.secondary_contact_ids == [2, 3, 4]


def test_view_primary_without_email_lists_secondary_emails() -> None:
    view = build_consolidated_view(
        [_contact(1, phone="p"), _contact(2, linked_id=1, seconds=1, email="x")]
    )
    assert view.emails == ["x"]
    assert view.phone_numbers == ["p"]


def test_view_requires_exactly_one_primary() -> None:
    with pytest.raises(ConsistencyError):
        build_consolidated_view([_contact(1, email="a"), _contact(2, email="b")])
    with pytest.raises(ConsistencyError):
        build_consolidated_view([_contact(2, linked_id=1, email="b")])


def test_response_payload_keeps_wire_field_names() -> None:
    view = build_consolidated_view([_contact(1, email="a", phone="1")])
    assert view.to_response() == {
        "contact": {
            "primaryContatctId": 1,
            "emails": ["a"],
            "phoneNumbers": ["1"],
            "secondaryContactIds": [],
        }
    }
