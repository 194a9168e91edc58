"""Host-document access: collaborator contract, selector resolver, soup document."""

from calendar_tools.dom.base import (
    BoundingBox,
    DomCollaborator,
    MutationRecord,
    ObserveConfig,
    ObserverHandle,
)
from calendar_tools.dom.selectors import matches_any, resolve, resolve_first

__all__ = [
    "BoundingBox",
    "DomCollaborator",
    "MutationRecord",
    "ObserveConfig",
    "ObserverHandle",
    "matches_any",
    "resolve",
    "resolve_first",
]
