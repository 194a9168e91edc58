"""BeautifulSoup-backed host document.

:class:`SoupDocument` implements :class:`~calendar_tools.dom.base.DomCollaborator`
over a parsed HTML tree.  It is used for offline processing of captured page
snapshots and as the document model in tests.  Changes made through
:meth:`SoupDocument.insert_html`, :meth:`SoupDocument.remove` and
:meth:`SoupDocument.set_attribute` are delivered to observers as
:class:`~calendar_tools.dom.base.MutationRecord` objects, synchronously and in
call order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import soupsieve
from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from calendar_tools.dom.base import (
    BoundingBox,
    DomCollaborator,
    MutationCallback,
    MutationRecord,
    ObserveConfig,
    ObserverHandle,
)

logger = logging.getLogger(__name__)

ClickHandler = Callable[["SoupDocument", Tag], None]

_PARSER = "html.parser"


def _normalise(text: str) -> str:
    return " ".join(text.split())


class _SoupObserver(ObserverHandle):
    def __init__(
        self,
        document: SoupDocument,
        root: Tag,
        config: ObserveConfig,
        callback: MutationCallback,
    ) -> None:
        self._document = document
        self.root = root
        self.config = config
        self.callback = callback
        self.connected = True

    def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self._document._observers.remove(self)

    def wants(self, record: MutationRecord) -> bool:
        if record.type == "childList" and not self.config.child_list:
            return False
        if record.type == "attributes":
            if not self.config.attributes:
                return False
            allowed = self.config.attribute_filter
            if allowed is not None and record.attribute_name not in allowed:
                return False
        if record.target is self.root:
            return True
        return self.config.subtree and self._document.contains(self.root, record.target)


class SoupDocument(DomCollaborator):
    """In-process host document built from HTML markup."""

    def __init__(self, markup: str, *, ready: bool = True) -> None:
        self._soup = BeautifulSoup(markup, _PARSER)
        self._observers: list[_SoupObserver] = []
        self._click_handlers: list[tuple[str, ClickHandler]] = []
        self._layout: dict[int, tuple[Tag, BoundingBox]] = {}
        self.ready = ready
        self.clicks: list[Tag] = []
        self.dispatched_keys: list[str] = []

    # ------------------------------------------------------------------
    # DomCollaborator
    # ------------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.ready

    def body(self) -> Tag:
        return self._soup.body or self._soup

    def query_all(self, selector: str, root: Any | None = None) -> list[Tag]:
        scope = root if root is not None else self._soup
        try:
            return list(scope.select(selector))
        except soupsieve.SelectorSyntaxError:
            logger.debug("Ignoring invalid selector %r", selector)
            return []

    def matches(self, element: Any, selector: str) -> bool:
        if not isinstance(element, Tag):
            return False
        try:
            return soupsieve.match(selector, element)
        except soupsieve.SelectorSyntaxError:
            return False

    def text_content(self, element: Any) -> str:
        if isinstance(element, NavigableString):
            return _normalise(str(element))
        return _normalise(element.get_text(" ", strip=True))

    def own_text(self, element: Any) -> str:
        parts = [
            str(child)
            for child in element.children
            if isinstance(child, NavigableString) and not isinstance(child, Comment)
        ]
        return _normalise(" ".join(parts))

    def get_attribute(self, element: Any, name: str) -> str | None:
        if not isinstance(element, Tag):
            return None
        value = element.get(name)
        if value is None:
            return None
        if isinstance(value, list):
            return " ".join(value)
        return str(value)

    def parent(self, element: Any) -> Any | None:
        return getattr(element, "parent", None)

    def next_sibling(self, element: Any) -> Any | None:
        if element is None or not isinstance(element, Tag):
            return None
        return element.find_next_sibling()

    def is_live(self, element: Any) -> bool:
        if element is None:
            return False
        if element is self._soup:
            return True
        return any(ancestor is self._soup for ancestor in getattr(element, "parents", ()))

    def get_bounding_box(self, element: Any) -> BoundingBox | None:
        entry = self._layout.get(id(element))
        if entry is None or entry[0] is not element:
            return None
        return entry[1]

    def elements_at_point(self, x: float, y: float) -> list[Any]:
        hits = [
            element
            for element, box in self._layout.values()
            if box.contains(x, y) and self.is_live(element)
        ]
        hits.sort(key=lambda element: len(list(element.parents)), reverse=True)
        return hits

    def simulate_click(self, element: Any) -> None:
        self.clicks.append(element)
        for selector, handler in list(self._click_handlers):
            if self.matches(element, selector):
                handler(self, element)

    def dispatch_key(self, key: str) -> None:
        self.dispatched_keys.append(key)

    def observe(
        self,
        root: Any,
        config: ObserveConfig,
        callback: MutationCallback,
    ) -> ObserverHandle:
        observer = _SoupObserver(self, root, config, callback)
        self._observers.append(observer)
        return observer

    # ------------------------------------------------------------------
    # Document manipulation
    # ------------------------------------------------------------------

    def select_one(self, selector: str) -> Tag | None:
        found = self.query_all(selector)
        return found[0] if found else None

    def insert_html(self, parent: Tag, markup: str) -> list[Tag]:
        """Parse *markup* and append its top-level elements to *parent*."""
        fragment = BeautifulSoup(markup, _PARSER)
        added = [child for child in list(fragment.children) if isinstance(child, Tag)]
        for tag in added:
            parent.append(tag.extract())
        if added:
            self._emit(MutationRecord(type="childList", target=parent, added_nodes=tuple(added)))
        return added

    def remove(self, element: Tag) -> None:
        """Detach *element* from the document."""
        parent = element.parent
        element.extract()
        if parent is not None:
            self._emit(MutationRecord(type="childList", target=parent, removed_nodes=(element,)))

    def set_attribute(self, element: Tag, name: str, value: str) -> None:
        element[name] = value
        self._emit(MutationRecord(type="attributes", target=element, attribute_name=name))

    def set_layout(self, element: Tag, box: BoundingBox) -> None:
        """Assign page geometry to *element*."""
        self._layout[id(element)] = (element, box)

    def on_click(self, selector: str, handler: ClickHandler) -> None:
        """Run *handler* whenever an element matching *selector* is clicked."""
        self._click_handlers.append((selector, handler))

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def _emit(self, record: MutationRecord) -> None:
        for observer in list(self._observers):
            if observer.connected and observer.wants(record):
                observer.callback([record])
