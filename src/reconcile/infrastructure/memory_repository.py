"""In-memory implementation of ContactStore (no DB).

Transactions stage their writes and publish them on commit. Isolation comes from
keyed locks: one per normalized email/phone of the observation, one per locked
contact. Lock waits time out into WriteConflict so lock-order cycles resolve by
retry instead of hanging.
"""

import threading
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone

from reconcile.application.errors import WriteConflict
from reconcile.domain import Contact, LinkPrecedence
from reconcile.infrastructure.phone import lock_keys

DEFAULT_LOCK_TIMEOUT = 5.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _KeyedLocks:
    """A lazily created threading.Lock per key.

    Each entry counts its holder and waiters and is dropped when the count reaches
    zero, so the table only holds keys currently in use.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, holders + waiters]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def acquire(self, key: str, timeout: float) -> None:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        if not entry[0].acquire(timeout=timeout):
            self._forget(key)
            raise WriteConflict(f"Timed out after {timeout}s waiting for lock {key!r}")

    def release(self, key: str) -> None:
        lock = self._forget(key)
        lock.release()

    def _forget(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]
        return entry[0]


class InMemoryContactStore:
    """Stores contacts in memory. Ids come from a counter, timestamps from `clock`."""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        self._clock = clock or _utcnow
        self._lock_timeout = lock_timeout
        self._guard = threading.Lock()
        self._rows: dict[int, Contact] = {}
        self._next_id = 1
        self._locks = _KeyedLocks()

    @contextmanager
    def transaction(
        self, email: str | None, phone_number: str | None
    ) -> Iterator["_MemoryTransaction"]:
        tx = _MemoryTransaction(self)
        try:
            for key in lock_keys(email, phone_number):
                tx.acquire(key)
            yield tx
            tx.commit()
        finally:
            tx.release_all()

    def list_all(self) -> list[Contact]:
        """Committed contacts in (created_at, id) order."""
        with self._guard:
            rows = list(self._rows.values())
        return sorted(rows, key=lambda c: c.sort_key)

    def add(self, contact: Contact) -> None:
        """Store a contact as-is, bypassing the engine. For seeding fixtures."""
        with self._guard:
            self._rows[contact.id] = contact
            self._next_id = max(self._next_id, contact.id + 1)

    def _allocate_id(self) -> int:
        # Sequence semantics: ids handed out by rolled-back transactions are not reused.
        with self._guard:
            contact_id = self._next_id
            self._next_id += 1
        return contact_id

    def _snapshot(self) -> dict[int, Contact]:
        with self._guard:
            return dict(self._rows)

    def _publish(self, staged: dict[int, Contact]) -> None:
        with self._guard:
            self._rows.update(staged)


class _MemoryTransaction:
    """Read-committed view of the store overlaid with this transaction's staged writes."""

    def __init__(self, store: InMemoryContactStore) -> None:
        self._store = store
        self._staged: dict[int, Contact] = {}
        self._held: list[str] = []

    def acquire(self, key: str) -> None:
        if key in self._held:
            return
        self._store._locks.acquire(key, self._store._lock_timeout)
        self._held.append(key)

    def release_all(self) -> None:
        while self._held:
            self._store._locks.release(self._held.pop())

    def commit(self) -> None:
        self._store._publish(self._staged)
        self._staged = {}

    def _visible(self) -> list[Contact]:
        rows = self._store._snapshot()
        rows.update(self._staged)
        return sorted(
            (c for c in rows.values() if c.deleted_at is None),
            key=lambda c: c.sort_key,
        )

    def find_candidates(self, email: str | None, phone_number: str | None) -> list[Contact]:
        return [
            c
            for c in self._visible()
            if (email is not None and c.email == email)
            or (phone_number is not None and c.phone_number == phone_number)
        ]

    def get_by_id(self, contact_id: int) -> Contact | None:
        contact = self._staged.get(contact_id) or self._store._snapshot().get(contact_id)
        if contact is None or contact.deleted_at is not None:
            return None
        return contact

    def list_linked_to(self, contact_id: int) -> list[Contact]:
        return [c for c in self._visible() if c.linked_id == contact_id]

    def lock_contacts(self, contact_ids: Iterable[int]) -> None:
        for contact_id in sorted(contact_ids):
            self.acquire(f"contact:{contact_id}")

    def create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        *,
        linked_id: int | None = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
    ) -> Contact:
        now = self._store._clock()
        contact = Contact(
            id=self._store._allocate_id(),
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=link_precedence,
            created_at=now,
            updated_at=now,
        )
        self._staged[contact.id] = contact
        return contact

    def demote_to_secondary(self, contact_id: int, new_primary_id: int) -> None:
        contact = self.get_by_id(contact_id)
        if contact is None:
            return
        self._staged[contact_id] = replace(
            contact,
            link_precedence=LinkPrecedence.SECONDARY,
            linked_id=new_primary_id,
            updated_at=self._store._clock(),
        )

    def relink_children(self, old_primary_id: int, new_primary_id: int) -> None:
        now = self._store._clock()
        for child in self.list_linked_to(old_primary_id):
            self._staged[child.id] = replace(child, linked_id=new_primary_id, updated_at=now)
