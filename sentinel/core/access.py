"""Capability checks shared by the ledger and the guard."""

from typing import Optional, Iterable

from errors import Unauthorized


def normalize_identity(identity: Optional[str]) -> str:
    """Identities are addresses or plain names, compared case-insensitively."""
    return (identity or "").strip().lower()


def same_identity(a: Optional[str], b: Optional[str]) -> bool:
    a, b = normalize_identity(a), normalize_identity(b)
    return bool(a) and a == b


def require_caller(allowed: Iterable[Optional[str]], operation: str, caller: Optional[str]) -> None:
    """
    Raise Unauthorized unless ``caller`` matches one of ``allowed``.

    Args:
        allowed: Identities permitted to perform the operation
        operation: Operation name, used in the error
        caller: Identity of the caller
    """
    if not any(same_identity(identity, caller) for identity in allowed):
        raise Unauthorized(operation, caller)
