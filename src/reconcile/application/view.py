"""Consolidated view of a materialized cluster."""

from collections.abc import Iterable

from reconcile.application.dto import ConsolidatedContact
from reconcile.application.errors import ConsistencyError
from reconcile.domain import Contact


def _first_seen(values: Iterable[str | None]) -> list[str]:
    out: list[str] = []
    for value in values:
        if value is not None and value not in out:
            out.append(value)
    return out


def build_consolidated_view(cluster: Iterable[Contact]) -> ConsolidatedContact:
    """Project a cluster: primary values first, then secondaries in (created_at, id) order."""
    contacts = list(cluster)
    primaries = [c for c in contacts if c.is_primary]
    if len(primaries) != 1:
        raise ConsistencyError(f"Cluster has {len(primaries)} primary contacts, expected 1.")
    primary = primaries[0]
    secondaries = sorted((c for c in contacts if not c.is_primary), key=lambda c: c.sort_key)
    ordered = [primary, *secondaries]
    return ConsolidatedContact(
        primary_contact_id=primary.id,
        emails=_first_seen(c.email for c in ordered),
        phone_numbers=_first_seen(c.phone_number for c in ordered),
        secondary_contact_ids=[c.id for c in secondaries],
    )
