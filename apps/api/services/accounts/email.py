"""Personal vs corporate email classification."""

from typing import FrozenSet

PERSONAL_EMAIL_DOMAINS: FrozenSet[str] = frozenset(
    {
        "gmail.com",
        "yahoo.com",
        "hotmail.com",
        "outlook.com",
        "icloud.com",
        "aol.com",
        "protonmail.com",
        "mail.com",
        "zoho.com",
        "yandex.com",
        "gmx.com",
    }
)


def is_personal_email_domain(email: str) -> bool:
    """Return True when the address belongs to a consumer mail provider."""
    text = str(email or "")
    if "@" not in text:
        return False
    domain = text.rsplit("@", 1)[1].lower()
    return domain in PERSONAL_EMAIL_DOMAINS
