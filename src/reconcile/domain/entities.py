"""Domain entities: Contact and its link precedence."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class LinkPrecedence(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass(frozen=True)
class Contact:
    """
    One observed contact point of a customer identity.
    A primary anchors a cluster; a secondary points at its primary through linked_id.
    """

    id: int
    email: str | None
    phone_number: str | None
    link_precedence: LinkPrecedence
    created_at: datetime
    updated_at: datetime
    linked_id: int | None = None
    deleted_at: datetime | None = None

    def __post_init__(self):
        if self.email is None and self.phone_number is None:
            raise ValueError("Contact must have an email or a phone number.")
        # Accepts the raw string stored by persistence adapters.
        object.__setattr__(self, "link_precedence", LinkPrecedence(self.link_precedence))

    @property
    def is_primary(self) -> bool:
        return self.link_precedence is LinkPrecedence.PRIMARY

    @property
    def owning_primary_id(self) -> int | None:
        """Id of the primary this contact belongs to (itself when primary)."""
        return self.id if self.is_primary else self.linked_id

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Creation order, ties broken by id."""
        return (self.created_at, self.id)
