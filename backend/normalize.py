"""Explicit normalization of user-entered identifiers.

Applied once when input is parsed (see ``schemas``), never implicitly on
attribute assignment.
"""
import re

_NON_DIGITS = re.compile(r"\D")

def normalize_card_id(value: str) -> str:
    return value.strip().upper()

def normalize_phone(value: str) -> str:
    return _NON_DIGITS.sub("", value)

def normalize_login(value: str) -> str:
    return value.strip().lower()
