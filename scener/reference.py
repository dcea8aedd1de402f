"""Resolve session references: a session id, or ``@N`` counting from the newest."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .errors import ReferenceNotFound


def parse_index(reference: str) -> Optional[int]:
    """``@`` and ``@1`` are the newest session (index 0); ``@0`` is invalid."""
    if reference == "@":
        return 0
    if not reference.startswith("@"):
        return None
    digits = reference[1:]
    if not digits.isdigit():
        return None
    value = int(digits)
    return value - 1 if value > 0 else None


def resolve_reference(reference: str, session_ids: Sequence[str]) -> str:
    index = parse_index(reference)
    if index is not None:
        if index >= len(session_ids):
            raise ReferenceNotFound(reference, "index out of range")
        return session_ids[index]
    if reference in session_ids:
        return reference
    raise ReferenceNotFound(reference)


def resolve_references(references: Iterable[str], session_ids: Sequence[str]) -> List[str]:
    return [resolve_reference(reference, session_ids) for reference in references]
