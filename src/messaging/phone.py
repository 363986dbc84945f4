import re

_NON_DIGITS = re.compile(r"\D")


def strip_channel(phone: str) -> str:
    """'whatsapp:+15550102000' -> '+15550102000'"""
    return phone.split(":", 1)[1] if phone.lower().startswith("whatsapp:") else phone


def format_phone_number(phone: str) -> str:
    """Normalize to E.164, assuming North America for bare 10-digit numbers."""
    phone = strip_channel(phone.strip())
    digits = _NON_DIGITS.sub("", phone)
    if len(digits) == 10:
        return f"+1{digits}"
    if len(digits) > 10:
        return f"+{digits}"
    return phone


def is_valid_phone_number(phone: str) -> bool:
    return 10 <= len(_NON_DIGITS.sub("", phone)) <= 15
