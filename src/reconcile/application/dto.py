"""Data transfer objects crossing the application boundary."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class IdentifyRequest:
    email: str | None = None
    phone_number: str | None = None


@dataclass(frozen=True)
class ConsolidatedContact:
    """Deduplicated, ordered projection of one cluster."""

    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    def to_response(self) -> dict:
        """Wire payload. "primaryContatctId" keeps the spelling existing clients expect."""
        return {
            "contact": {
                "primaryContatctId": self.primary_contact_id,
                "emails": list(self.emails),
                "phoneNumbers": list(self.phone_numbers),
                "secondaryContactIds": list(self.secondary_contact_ids),
            }
        }
