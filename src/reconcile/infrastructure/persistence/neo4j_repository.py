"""Neo4j implementation of ContactStore.

Graph: one (:Contact) node per contact; the link to a primary is the linked_id
property, mirroring the relational shape the API exposes. Timestamps are stored as
ISO-8601 strings with microseconds so lexical order is chronological.
(:ContactLock {key}) nodes are merged and written at the start of a transaction to
serialize invocations that observe the same email or phone. They are never
deleted: there is one small node per distinct normalized value ever observed, which
grows with the contact data itself. Ids come from a
(:ContactSequence) counter incremented in its own short transaction.
"""

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError

from reconcile.application.errors import TransientStoreError, WriteConflict
from reconcile.domain import Contact, LinkPrecedence
from reconcile.infrastructure.phone import lock_keys

logger = logging.getLogger(__name__)

_CONSTRAINT_QUERIES = (
    """
    CREATE CONSTRAINT contact_id_unique IF NOT EXISTS
    FOR (c:Contact) REQUIRE c.id IS UNIQUE
    """,
    """
    CREATE CONSTRAINT contact_lock_key_unique IF NOT EXISTS
    FOR (k:ContactLock) REQUIRE k.key IS UNIQUE
    """,
    """
    CREATE CONSTRAINT contact_sequence_name_unique IF NOT EXISTS
    FOR (s:ContactSequence) REQUIRE s.name IS UNIQUE
    """,
    "CREATE INDEX contact_email IF NOT EXISTS FOR (c:Contact) ON (c.email)",
    "CREATE INDEX contact_phone_number IF NOT EXISTS FOR (c:Contact) ON (c.phone_number)",
    "CREATE INDEX contact_linked_id IF NOT EXISTS FOR (c:Contact) ON (c.linked_id)",
)

_NEXT_ID_QUERY = """
MERGE (s:ContactSequence { name: 'contact' })
ON CREATE SET s.value = 0
SET s.value = s.value + 1
RETURN s.value AS id
"""

_LOCK_KEY_QUERY = """
MERGE (k:ContactLock { key: $key })
SET k.acquired_at = $now
"""

_LOCK_CONTACTS_QUERY = """
MATCH (c:Contact)
WHERE c.id IN $ids
WITH c ORDER BY c.id
SET c._lock = true
REMOVE c._lock
RETURN count(c) AS locked
"""

_FIND_CANDIDATES_QUERY = """
MATCH (c:Contact)
WHERE c.deleted_at IS NULL
  AND (($email IS NOT NULL AND c.email = $email)
       OR ($phone_number IS NOT NULL AND c.phone_number = $phone_number))
RETURN c
ORDER BY c.created_at, c.id
"""

_GET_BY_ID_QUERY = """
MATCH (c:Contact { id: $id })
WHERE c.deleted_at IS NULL
RETURN c
"""

_LIST_LINKED_QUERY = """
MATCH (c:Contact { linked_id: $id })
WHERE c.deleted_at IS NULL
RETURN c
ORDER BY c.created_at, c.id
"""

_CREATE_QUERY = """
CREATE (c:Contact {
    id: $id,
    email: $email,
    phone_number: $phone_number,
    linked_id: $linked_id,
    link_precedence: $link_precedence,
    created_at: $now,
    updated_at: $now
})
RETURN c
"""

_DEMOTE_QUERY = """
MATCH (c:Contact { id: $id })
SET c.link_precedence = 'secondary',
    c.linked_id = $primary_id,
    c.updated_at = $now
"""

_RELINK_QUERY = """
MATCH (c:Contact { linked_id: $old_primary_id })
SET c.linked_id = $new_primary_id,
    c.updated_at = $now
"""


def _datetime_to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _iso_to_datetime(s: str) -> datetime:
    return datetime.fromisoformat(s.replace("Z", "+00:00"))


def _now_iso() -> str:
    return _datetime_to_iso(datetime.now(timezone.utc))


def ensure_contact_schema(driver) -> None:
    """Create constraints and indexes used by Neo4jContactStore if missing."""
    with driver.session() as session:
        for query in _CONSTRAINT_QUERIES:
            session.run(query)


class Neo4jContactStore:
    """Stores contacts in Neo4j. One session and one explicit transaction per invocation."""

    def __init__(self, driver: object, *, database: str | None = None) -> None:
        self._driver = driver
        self._database = database

    def _session(self):
        if self._database:
            return self._driver.session(database=self._database)
        return self._driver.session()

    @contextmanager
    def transaction(
        self, email: str | None, phone_number: str | None
    ) -> Iterator["_Neo4jTransaction"]:
        try:
            with self._session() as session:
                tx = session.begin_transaction()
                try:
                    now = _now_iso()
                    for key in lock_keys(email, phone_number):
                        tx.run(_LOCK_KEY_QUERY, key=key, now=now).consume()
                    yield _Neo4jTransaction(tx, self._next_id)
                    tx.commit()
                finally:
                    if not tx.closed():
                        tx.rollback()
        except TransientError as e:
            raise WriteConflict(str(e)) from e
        except (ServiceUnavailable, SessionExpired) as e:
            raise TransientStoreError(f"Neo4j unavailable: {e}") from e

    def _next_id(self) -> int:
        # Own session and auto-committed transaction, like a SQL sequence.
        with self._session() as session:
            record = session.execute_write(lambda tx: tx.run(_NEXT_ID_QUERY).single())
        return record["id"]

    def list_all(self) -> list[Contact]:
        with self._session() as session:
            result = session.run(
                """
                MATCH (c:Contact)
                RETURN c
                ORDER BY c.created_at, c.id
                """
            )
            return [_node_to_contact(rec["c"]) for rec in result]


class _Neo4jTransaction:
    def __init__(self, tx, next_id) -> None:
        self._tx = tx
        self._next_id = next_id

    def find_candidates(self, email: str | None, phone_number: str | None) -> list[Contact]:
        result = self._tx.run(_FIND_CANDIDATES_QUERY, email=email, phone_number=phone_number)
        return [_node_to_contact(rec["c"]) for rec in result]

    def get_by_id(self, contact_id: int) -> Contact | None:
        record = self._tx.run(_GET_BY_ID_QUERY, id=contact_id).single()
        if not record:
            return None
        return _node_to_contact(record["c"])

    def list_linked_to(self, contact_id: int) -> list[Contact]:
        result = self._tx.run(_LIST_LINKED_QUERY, id=contact_id)
        return [_node_to_contact(rec["c"]) for rec in result]

    def lock_contacts(self, contact_ids: Iterable[int]) -> None:
        ids = sorted(contact_ids)
        if ids:
            self._tx.run(_LOCK_CONTACTS_QUERY, ids=ids).consume()

    def create_contact(
        self,
        email: str | None,
        phone_number: str | None,
        *,
        linked_id: int | None = None,
        link_precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
    ) -> Contact:
        record = self._tx.run(
            _CREATE_QUERY,
            id=self._next_id(),
            email=email,
            phone_number=phone_number,
            linked_id=linked_id,
            link_precedence=LinkPrecedence(link_precedence).value,
            now=_now_iso(),
        ).single()
        return _node_to_contact(record["c"])

    def demote_to_secondary(self, contact_id: int, new_primary_id: int) -> None:
        self._tx.run(
            _DEMOTE_QUERY, id=contact_id, primary_id=new_primary_id, now=_now_iso()
        ).consume()

    def relink_children(self, old_primary_id: int, new_primary_id: int) -> None:
        self._tx.run(
            _RELINK_QUERY,
            old_primary_id=old_primary_id,
            new_primary_id=new_primary_id,
            now=_now_iso(),
        ).consume()


def _node_to_contact(node) -> Contact:
    deleted_at = node.get("deleted_at")
    return Contact(
        id=node["id"],
        email=node.get("email"),
        phone_number=node.get("phone_number"),
        linked_id=node.get("linked_id"),
        link_precedence=node["link_precedence"],
        created_at=_iso_to_datetime(node["created_at"]),
        updated_at=_iso_to_datetime(node["updated_at"]),
        deleted_at=_iso_to_datetime(deleted_at) if deleted_at else None,
    )
