"""Shared validation utilities"""

import re
from typing import Optional


def normalize_br_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a Brazilian phone number to digits with the country code.

    Numbers with more than 9 digits that lack the 55 prefix get it prepended,
    shorter numbers are returned as plain digits.

    Returns:
        Digits-only phone (e.g. 5511999998888), or None when nothing is left
    """
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if not digits:
        return None

    if not digits.startswith("55") and len(digits) > 9:
        digits = f"55{digits}"

    return digits


def to_e164(phone: Optional[str]) -> Optional[str]:
    """Format a phone number as E.164 (+5511999998888)"""
    digits = normalize_br_phone(phone)
    return f"+{digits}" if digits else None
