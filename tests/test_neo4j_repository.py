"""Tests for Neo4jContactStore. Error translation runs against a fake driver; the
integration tests require Docker (testcontainers) and are skipped without it."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from neo4j.exceptions import ServiceUnavailable, SessionExpired, TransientError

from reconcile.application import ContactService, TransientStoreError, WriteConflict
from reconcile.domain import LinkPrecedence
from reconcile.infrastructure import Neo4jContactStore, ensure_contact_schema


class _FailingSession:
    def __init__(self, error: Exception) -> None:
        self._error = error

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None

    def begin_transaction(self):
        raise self._error


class _FakeDriver:
    """Fails either when a session is opened or when its transaction begins."""

    def __init__(self, *, on_session: Exception | None = None, on_begin: Exception | None = None):
        self._on_session = on_session
        self._on_begin = on_begin

    def session(self, **kwargs):
        if self._on_session is not None:
            raise self._on_session
        return _FailingSession(self._on_begin)


@pytest.mark.parametrize("error", [ServiceUnavailable("down"), SessionExpired("expired")])
def test_unavailable_driver_raises_transient_store_error(error) -> None:
    store = Neo4jContactStore(_FakeDriver(on_session=error))
    with pytest.raises(TransientStoreError) as excinfo:
        with store.transaction("a@x.com", None):
            pass
    assert excinfo.value.__cause__ is error


def test_transient_error_raises_write_conflict() -> None:
    error = TransientError("deadlock detected")
    store = Neo4jContactStore(_FakeDriver(on_begin=error))
    with pytest.raises(WriteConflict) as excinfo:
        with store.transaction("a@x.com", "123"):
            pass
    assert excinfo.value.__cause__ is error


def test_service_gives_up_when_store_unavailable() -> None:
    service = ContactService(
        Neo4jContactStore(_FakeDriver(on_session=ServiceUnavailable("down"))),
        base_delay=0,
    )
    with pytest.raises(TransientStoreError):
        service.identify(email="a@x.com")


@pytest.fixture(scope="session")
def neo4j_driver():
    neo4j_module = pytest.importorskip("testcontainers.neo4j")
    try:
        container = neo4j_module.Neo4jContainer().start()
    except Exception as e:  # Docker daemon missing or unreachable
        pytest.skip(f"Neo4j container unavailable: {e}")
    driver = container.get_driver()
    try:
        ensure_contact_schema(driver)
        yield driver
    finally:
        driver.close()
        container.stop()


@pytest.fixture
def clean_neo4j(neo4j_driver):
    """Clear the graph before each test so tests are independent."""
    with neo4j_driver.session() as session:
        session.run("MATCH (n) DETACH DELETE n")
    yield neo4j_driver


def test_create_find_and_list(clean_neo4j):
    store = Neo4jContactStore(clean_neo4j)
    with store.transaction("a@x.com", "123") as tx:
        created = tx.create_contact("a@x.com", "123")
        assert tx.get_by_id(created.id) == created

    with store.transaction("a@x.com", None) as tx:
        assert tx.find_candidates("a@x.com", None) == [created]
        assert tx.find_candidates(None, "123") == [created]
        assert tx.find_candidates("other@x.com", "999") == []

    assert store.list_all() == [created]
    assert created.id == 1
    assert created.link_precedence is LinkPrecedence.PRIMARY
    assert created.phone_number == "123"


def test_rollback_on_error(clean_neo4j):
    store = Neo4jContactStore(clean_neo4j)
    with pytest.raises(RuntimeError):
        with store.transaction("a@x.com", None) as tx:
            tx.create_contact("a@x.com", None)
            raise RuntimeError("boom")
    assert store.list_all() == []


def test_demote_and_relink(clean_neo4j):
    store = Neo4jContactStore(clean_neo4j)
    with store.transaction(None, None) as tx:
        a = tx.create_contact("a", None)
        b = tx.create_contact(None, "p")
        c = tx.create_contact("c", "p", linked_id=b.id, link_precedence=LinkPrecedence.SECONDARY)
        tx.lock_contacts([a.id, b.id])
        tx.demote_to_secondary(b.id, a.id)
        tx.relink_children(b.id, a.id)
        assert [x.id for x in tx.list_linked_to(a.id)] == [b.id, c.id]

    rows = {r.id: r for r in store.list_all()}
    assert rows[b.id].link_precedence is LinkPrecedence.SECONDARY
    assert rows[b.id].linked_id == a.id
    assert rows[c.id].linked_id == a.id


def test_service_scenarios(clean_neo4j):
    service = ContactService(Neo4jContactStore(clean_neo4j))

    first = service.identify(email="a@x.com")
    second = service.identify(email="a@x.com", phone_number="123")
    service.identify(email="b@x.com", phone_number="456")
    merged = service.identify(email="b@x.com", phone_number="123")
    repeated = service.identify(email="b@x.com", phone_number="123")

    assert first.to_response()["contact"]["primaryContatctId"] == 1
    assert second.secondary_contact_ids == [2]
    assert merged.primary_contact_id == 1
    assert merged.emails == ["a@x.com", "b@x.com"]
    assert merged.phone_numbers == ["123", "456"]
    assert merged.secondary_contact_ids == [2, 3]
    assert repeated == merged


def test_concurrent_duplicate_novel_email_creates_one_contact(clean_neo4j):
    store = Neo4jContactStore(clean_neo4j)
    service = ContactService(store, max_attempts=5)
    barrier = threading.Barrier(4)

    def call(_):
        barrier.wait(timeout=30)
        return service.identify(email="new@x.com")

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(call, range(4)))

    assert len(store.list_all()) == 1
    assert len({r.primary_contact_id for r in results}) == 1
