"""Identity consolidation: new primary, extend a cluster, or merge clusters."""

import logging
import time

from reconcile.application.dto import ConsolidatedContact, IdentifyRequest
from reconcile.application.errors import (
    ConsistencyError,
    InvalidObservation,
    TransientStoreError,
    WriteConflict,
)
from reconcile.application.materializer import ClusterMaterializer
from reconcile.application.ports import ContactStore, StoreTransaction
from reconcile.application.view import build_consolidated_view
from reconcile.domain import Contact, LinkPrecedence

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.05
DEFAULT_MAX_DELAY = 1.0


def _present(value: str | None) -> str | None:
    return value if value else None


def _owning_primary_ids(candidates: list[Contact]) -> set[int]:
    return {c.owning_primary_id for c in candidates if c.owning_primary_id is not None}


def _introduces_new_info(
    cluster: list[Contact], email: str | None, phone_number: str | None
) -> bool:
    emails = {c.email for c in cluster if c.email is not None}
    phones = {c.phone_number for c in cluster if c.phone_number is not None}
    has_new_email = email is not None and email not in emails
    has_new_phone = phone_number is not None and phone_number not in phones
    return has_new_email or has_new_phone


class ContactService:
    """Core flow: observation -> candidates -> (merge) -> (new secondary) -> consolidated view.

    Every invocation runs in one store transaction; write conflicts retry the whole
    invocation with exponential backoff.
    """

    def __init__(
        self,
        store: ContactStore,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self._max_delay = max_delay

    def identify(
        self, email: str | None = None, phone_number: str | None = None
    ) -> ConsolidatedContact:
        """Reconcile one (email, phone) observation and return the consolidated identity."""
        email = _present(email)
        phone_number = _present(phone_number)
        if email is None and phone_number is None:
            raise InvalidObservation("At least one of email or phoneNumber must be provided")

        delay = self._base_delay
        for attempt in range(1, self._max_attempts + 1):
            try:
                with self._store.transaction(email, phone_number) as tx:
                    return self._identify_in(tx, email, phone_number)
            except WriteConflict as e:
                if attempt == self._max_attempts:
                    raise TransientStoreError(
                        f"Failed after {self._max_attempts} attempts: {e}"
                    ) from e
                current_delay = min(delay, self._max_delay)
                logger.warning(
                    "Write conflict on attempt %d/%d, retrying in %.2fs: %s",
                    attempt,
                    self._max_attempts,
                    current_delay,
                    e,
                )
                time.sleep(current_delay)
                delay *= 2
            except ConsistencyError:
                logger.exception(
                    "Consistency violation while identifying email=%r phone=%r",
                    email,
                    phone_number,
                )
                raise
        raise AssertionError("unreachable")

    def identify_request(self, request: IdentifyRequest) -> ConsolidatedContact:
        return self.identify(request.email, request.phone_number)

    def _identify_in(
        self, tx: StoreTransaction, email: str | None, phone_number: str | None
    ) -> ConsolidatedContact:
        candidates = tx.find_candidates(email, phone_number)
        if not candidates:
            created = tx.create_contact(email, phone_number)
            logger.info("Created primary contact %s", created.id)
            return build_consolidated_view([created])

        primary_ids = self._lock_owning_primaries(tx, email, phone_number, candidates)
        if not primary_ids:
            raise ConsistencyError(
                f"{len(candidates)} candidate contact(s) resolve to no primary contact."
            )

        if len(primary_ids) == 1:
            (primary_id,) = primary_ids
        else:
            primary_id = self._merge(tx, primary_ids)

        cluster = ClusterMaterializer(tx).materialize(primary_id)
        if _introduces_new_info(cluster, email, phone_number):
            secondary = tx.create_contact(
                email,
                phone_number,
                linked_id=primary_id,
                link_precedence=LinkPrecedence.SECONDARY,
            )
            logger.info("Created secondary contact %s linked to %s", secondary.id, primary_id)
            cluster.append(secondary)
        return build_consolidated_view(cluster)

    def _lock_owning_primaries(
        self,
        tx: StoreTransaction,
        email: str | None,
        phone_number: str | None,
        candidates: list[Contact],
    ) -> set[int]:
        """Lock the primaries owning the candidates until the set stops changing.

        A concurrent merge may demote a primary while we wait on its lock, so the
        candidates are re-read after every round of new locks.
        """
        locked: set[int] = set()
        owners = _owning_primary_ids(candidates)
        while owners - locked:
            tx.lock_contacts(sorted(owners - locked))
            locked |= owners
            owners = _owning_primary_ids(tx.find_candidates(email, phone_number))
        return owners

    def _merge(self, tx: StoreTransaction, primary_ids: set[int]) -> int:
        """Fold every touched cluster into the oldest primary and return its id."""
        primaries = []
        for primary_id in primary_ids:
            contact = tx.get_by_id(primary_id)
            if contact is None or not contact.is_primary:
                raise ConsistencyError(f"Contact {primary_id} is referenced as a primary but is not one.")
            primaries.append(contact)
        primaries.sort(key=lambda c: c.sort_key)
        surviving, absorbed = primaries[0], primaries[1:]
        for contact in absorbed:
            tx.demote_to_secondary(contact.id, surviving.id)
            tx.relink_children(contact.id, surviving.id)
        logger.info(
            "Merged primaries %s into %s",
            [c.id for c in absorbed],
            surviving.id,
        )
        return surviving.id
