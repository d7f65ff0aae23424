"""Application ports (interfaces). Implemented by infrastructure adapters."""

from collections.abc import Iterable
from contextlib import AbstractContextManager
from typing import Protocol

from reconcile.domain import Contact, LinkPrecedence


class StoreTransaction(Protocol):
    """Reads and writes scoped to one identify invocation.

    Writes become visible to other transactions only when the scope commits.
    """

    def find_candidates(self, email: str | None, phone_number: str | None) -> list[Contact]:
        """Non-deleted contacts matching the email OR the phone, (created_at, id) ascending."""
        ...

    def get_by_id(self, contact_id: int) -> Contact | None:
        """Return the non-deleted contact with the given id, or None."""
        ...

    def list_linked_to(self, contact_id: int) -> list[Contact]:
        """Non-deleted contacts whose linked_id is contact_id, (created_at, id) ascending."""
        ...

    def lock_contacts(self, contact_ids: Iterable[int]) -> None:
        """Hold write locks on the given contacts until the transaction ends."""
        ...

    def create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        *,
        linked_id: int | None = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
    ) -> Contact:
        """Insert a contact and return it with its assigned id and timestamps."""
        ...

    def demote_to_secondary(self, contact_id: int, new_primary_id: int) -> None:
        """Set precedence=secondary and linked_id=new_primary_id."""
        ...

    def relink_children(self, old_primary_id: int, new_primary_id: int) -> None:
        """Repoint every contact linked to old_primary_id at new_primary_id."""
        ...


class ContactStore(Protocol):
    """Persists contacts. Owns durability, transaction scope and locking."""

    def transaction(
        self, email: str | None, phone_number: str | None
    ) -> AbstractContextManager[StoreTransaction]:
        """Open a transaction holding locks keyed by the observed email and phone.

        Commits on normal exit; rolls back and releases every lock otherwise.
        Raises WriteConflict on lock contention and TransientStoreError when the
        backing store is unreachable.
        """
        ...
