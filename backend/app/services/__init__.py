"""Application service helpers."""

from .permissions import Authority, ModerationAction, require_authority, resolve_authority

__all__ = [
    "Authority",
    "ModerationAction",
    "require_authority",
    "resolve_authority",
]
