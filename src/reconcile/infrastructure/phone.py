"""Normalization of observed values into lock keys.

Stored values are matched exactly; normalization only widens what a lock covers,
so two spellings of the same number serialize against each other.
"""

import phonenumbers


def normalize_phone(raw: str, default_region: str | None = None) -> str | None:
    """Parse and return E.164 form of the number, or None if invalid.

    Use default_region when the input has no leading + (e.g. "123 456 7890"
    with default_region "IT" for Italy). If the number already includes a
    country code, default_region is ignored.
    """
    if not raw or not str(raw).strip():
        return None
    raw = str(raw).strip()
    try:
        parsed = phonenumbers.parse(raw, default_region)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_valid_number(parsed):
        return None
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def email_lock_key(email: str) -> str:
    return "email:" + email.strip().lower()


def phone_lock_key(phone_number: str) -> str:
    stripped = phone_number.strip()
    return "phone:" + (normalize_phone(stripped) or stripped)


def lock_keys(email: str | None, phone_number: str | None) -> list[str]:
    """Sorted, distinct lock keys for an observation."""
    keys = set()
    if email:
        keys.add(email_lock_key(email))
    if phone_number:
        keys.add(phone_lock_key(phone_number))
    return sorted(keys)
