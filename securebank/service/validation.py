"""Signup field rules shared by the API schemas and the auth service."""

from __future__ import annotations

import re
import unicodedata
from datetime import date
from typing import Optional

from securebank.service.credentials import password_policy_error

# 50 states, DC and territories
US_STATE_CODES = frozenset(
    {
        "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA",
        "HI", "ID", "IL", "IN", "IA", "KS", "KY", "LA", "ME", "MD",
        "MA", "MI", "MN", "MS", "MO", "MT", "NE", "NV", "NH", "NJ",
        "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI", "SC",
        "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
        "DC", "PR", "VI", "GU", "AS", "MP",
    }
)

EMAIL_TYPO_DOMAINS = {
    "gmial.com": "gmail.com",
    "gmal.com": "gmail.com",
    "gamil.com": "gmail.com",
    "gmail.con": "gmail.com",
    "gmail.co": "gmail.com",
    "hotmal.com": "hotmail.com",
    "hotmail.con": "hotmail.com",
    "yahooo.com": "yahoo.com",
    "yahoo.con": "yahoo.com",
    "outloo.com": "outlook.com",
    "outlook.con": "outlook.com",
}

MINIMUM_AGE = 18

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")
_PHONE_SEPARATORS = re.compile(r"[\s\-().]")
_US_PHONE = re.compile(r"^\+?1?\d{10}$")
_INTL_PHONE = re.compile(r"^\+\d{11,14}$")
_SSN = re.compile(r"^\d{9}$")
_ZIP = re.compile(r"^\d{5}$")


def normalize_email(value: str) -> str:
    return unicodedata.normalize("NFKC", value.strip().lower())


def email_error(value: str) -> Optional[str]:
    """Return why ``value`` is not an acceptable signup email, or ``None``."""
    normalized = normalize_email(value)
    if len(normalized) > 254:
        return "Email address too long"
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain or "@" in domain:
        return "Invalid email address"
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        return "Invalid email address"
    if local.startswith(".") or local.endswith(".") or ".." in local:
        return "Invalid email address"
    labels = domain.split(".")
    if len(labels) < 2 or not all(_EMAIL_DOMAIN_LABEL.match(label) for label in labels):
        return "Invalid email address"
    return check_email_typo(normalized)


def check_email_typo(email: str) -> Optional[str]:
    """Suggest a correction when the domain is a well-known misspelling."""
    lowered = email.lower()
    domain = lowered.partition("@")[2]
    suggestion = EMAIL_TYPO_DOMAINS.get(domain)
    if suggestion:
        return f"Did you mean {lowered[: -len(domain)]}{suggestion}?"
    return None


def is_valid_phone_number(phone: str) -> bool:
    cleaned = _PHONE_SEPARATORS.sub("", phone)
    return bool(_US_PHONE.match(cleaned) or _INTL_PHONE.match(cleaned))


def is_valid_state_code(state: str) -> bool:
    return state.upper() in US_STATE_CODES


def is_valid_ssn(ssn: str) -> bool:
    return bool(_SSN.match(ssn))


def is_valid_zip_code(zip_code: str) -> bool:
    return bool(_ZIP.match(zip_code))


def calculate_age(born: date, today: Optional[date] = None) -> int:
    today = today or date.today()
    had_birthday = (today.month, today.day) >= (born.month, born.day)
    return today.year - born.year - (0 if had_birthday else 1)


def date_of_birth_error(value: str, today: Optional[date] = None) -> Optional[str]:
    try:
        born = date.fromisoformat(value)
    except ValueError:
        return "Date of birth must be a valid date (YYYY-MM-DD)"
    today = today or date.today()
    if born > today:
        return "Date of birth cannot be in the future"
    if calculate_age(born, today) < MINIMUM_AGE:
        return f"You must be at least {MINIMUM_AGE} years old"
    return None


__all__ = [
    "EMAIL_TYPO_DOMAINS",
    "MINIMUM_AGE",
    "US_STATE_CODES",
    "calculate_age",
    "check_email_typo",
    "date_of_birth_error",
    "email_error",
    "is_valid_phone_number",
    "is_valid_ssn",
    "is_valid_state_code",
    "is_valid_zip_code",
    "normalize_email",
    "password_policy_error",
]
