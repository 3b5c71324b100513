"""Generators for human-facing identifiers."""

import secrets
import string
from datetime import datetime

_ALPHABET = string.ascii_uppercase + string.digits


def _random_suffix(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _epoch_millis(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def generate_order_code(prefix: str, now: datetime) -> str:
    """prefix + last six digits of the millisecond clock + six random characters."""
    millis = str(_epoch_millis(now))[-6:]
    return f"{prefix}{millis}{_random_suffix(6)}"


def generate_transaction_id(now: datetime) -> str:
    return f"TXN{_epoch_millis(now)}{_random_suffix(6)}"


def generate_transfer_code() -> str:
    """16 upper-case hex characters."""
    return secrets.token_hex(8).upper()
