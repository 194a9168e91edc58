"""Host-document collaborator contract.

The core logic never touches markup directly.  It talks to the host page
through :class:`DomCollaborator`; element handles are opaque and must be
re-validated with :meth:`DomCollaborator.is_live` after any suspension point.
"""

from __future__ import annotations

import abc
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

MutationType = Literal["childList", "attributes"]


@dataclass(frozen=True)
class BoundingBox:
    """Element geometry in page coordinates."""

    left: float
    top: float
    width: float
    height: float

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2

    def contains(self, x: float, y: float) -> bool:
        return self.left <= x <= self.left + self.width and self.top <= y <= self.top + self.height


@dataclass(frozen=True)
class ObserveConfig:
    """Which mutations an observer wants to hear about."""

    child_list: bool = True
    subtree: bool = True
    attributes: bool = False
    attribute_filter: tuple[str, ...] | None = None


@dataclass(frozen=True)
class MutationRecord:
    """One host-document change delivered to an observer callback."""

    type: MutationType
    target: Any
    added_nodes: tuple[Any, ...] = field(default_factory=tuple)
    removed_nodes: tuple[Any, ...] = field(default_factory=tuple)
    attribute_name: str | None = None


MutationCallback = Callable[[Sequence[MutationRecord]], None]


class ObserverHandle(abc.ABC):
    """Handle returned by :meth:`DomCollaborator.observe`."""

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Stop delivering mutations.  Safe to call more than once."""


class DomCollaborator(abc.ABC):
    """Narrow interface onto the host page."""

    @property
    @abc.abstractmethod
    def is_ready(self) -> bool:
        """True once the host document has finished loading."""

    @abc.abstractmethod
    def body(self) -> Any:
        """Return the document body element."""

    @abc.abstractmethod
    def query_all(self, selector: str, root: Any | None = None) -> list[Any]:
        """Return all elements under *root* (default: whole document) matching *selector*.

        An invalid selector yields an empty list.
        """

    @abc.abstractmethod
    def matches(self, element: Any, selector: str) -> bool:
        """True if *element* itself matches *selector*."""

    @abc.abstractmethod
    def text_content(self, element: Any) -> str:
        """Whitespace-normalised text of *element* and its descendants."""

    @abc.abstractmethod
    def own_text(self, element: Any) -> str:
        """Whitespace-normalised text of *element*'s direct text nodes only."""

    @abc.abstractmethod
    def get_attribute(self, element: Any, name: str) -> str | None:
        """Attribute value, or None when absent."""

    @abc.abstractmethod
    def parent(self, element: Any) -> Any | None:
        """Parent element, or None at the document root."""

    @abc.abstractmethod
    def next_sibling(self, element: Any) -> Any | None:
        """Next sibling element, or None."""

    @abc.abstractmethod
    def is_live(self, element: Any) -> bool:
        """True while *element* is still attached to the document."""

    @abc.abstractmethod
    def get_bounding_box(self, element: Any) -> BoundingBox | None:
        """Element geometry, or None when layout is unknown."""

    @abc.abstractmethod
    def elements_at_point(self, x: float, y: float) -> list[Any]:
        """Elements whose box contains the point, innermost first."""

    @abc.abstractmethod
    def simulate_click(self, element: Any) -> None:
        """Dispatch a user click on *element*."""

    @abc.abstractmethod
    def dispatch_key(self, key: str) -> None:
        """Dispatch a keydown for *key* on the document."""

    @abc.abstractmethod
    def observe(
        self,
        root: Any,
        config: ObserveConfig,
        callback: MutationCallback,
    ) -> ObserverHandle:
        """Deliver mutations under *root* to *callback* until disconnected."""

    def contains(self, ancestor: Any, element: Any) -> bool:
        """True if *element* is *ancestor* or one of its descendants."""
        node = element
        while node is not None:
            if node is ancestor:
                return True
            node = self.parent(node)
        return False
