"""Bearer-token lookup for the calendar API.

Each :class:`CredentialSource` knows one place a token may live.
:class:`CredentialChain` asks them in order and the first usable token wins.
Sources never raise for a missing or malformed token; they return None and
the chain moves on.
"""

from __future__ import annotations

import abc
import inspect
import json
import logging
import os
from collections.abc import Awaitable, Callable, Iterable, Mapping
from urllib.parse import unquote

from calendar_tools.config import ENV_PREFIX
from calendar_tools.errors import CredentialMissing

logger = logging.getLogger(__name__)

STORAGE_KEYS = ("google_auth_token", "auth_token", "access_token")
COOKIE_NAME_MARKERS = ("auth", "token")
MIN_COOKIE_TOKEN_LENGTH = 20
ACCESS_TOKEN_ENV = f"{ENV_PREFIX}ACCESS_TOKEN"


class CredentialSource(abc.ABC):
    """One place a bearer token may be found."""

    name: str = "credential"

    @abc.abstractmethod
    async def get_token(self) -> str | None:
        """Return a bearer token, or None when this source has none."""


def _token_from_stored_value(raw: str) -> str | None:
    raw = raw.strip()
    if not raw:
        return None
    try:
        parsed = json.loads(raw)
    except ValueError:
        return raw
    if isinstance(parsed, dict):
        token = parsed.get("access_token") or parsed.get("token")
        return str(token) if token else None
    if isinstance(parsed, str):
        return parsed or None
    return raw


class StorageCredentialSource(CredentialSource):
    """Token stored under a well-known key in page storage.

    *storage* is a snapshot of ``localStorage`` or ``sessionStorage``.  Values
    may be a bare token or a JSON object with ``access_token`` or ``token``.
    """

    def __init__(
        self,
        storage: Mapping[str, str],
        *,
        name: str = "storage",
        keys: Iterable[str] = STORAGE_KEYS,
    ) -> None:
        self._storage = storage
        self._keys = tuple(keys)
        self.name = name

    async def get_token(self) -> str | None:
        for key in self._keys:
            raw = self._storage.get(key)
            if raw:
                token = _token_from_stored_value(raw)
                if token:
                    return token
        return None


class CookieCredentialSource(CredentialSource):
    """Long cookie whose name mentions ``auth`` or ``token``."""

    name = "cookie"

    def __init__(self, cookies: Mapping[str, str]) -> None:
        self._cookies = cookies

    @classmethod
    def from_header(cls, header: str) -> CookieCredentialSource:
        """Build from a ``document.cookie`` / ``Cookie:`` header string."""
        cookies: dict[str, str] = {}
        for part in header.split(";"):
            name, sep, value = part.strip().partition("=")
            if sep and name:
                cookies[name] = value
        return cls(cookies)

    async def get_token(self) -> str | None:
        for name, value in self._cookies.items():
            lowered = name.lower()
            if not any(marker in lowered for marker in COOKIE_NAME_MARKERS):
                continue
            if value and len(value) > MIN_COOKIE_TOKEN_LENGTH:
                return unquote(value)
        return None


TokenProvider = Callable[[], "str | None | Awaitable[str | None]"]


class InjectedCredentialSource(CredentialSource):
    """Token from an auth provider supplied by the embedding application."""

    name = "injected"

    def __init__(self, provider: TokenProvider) -> None:
        self._provider = provider

    async def get_token(self) -> str | None:
        try:
            result = self._provider()
            if inspect.isawaitable(result):
                result = await result
        except Exception:
            logger.warning("Injected auth provider failed", exc_info=True)
            return None
        return result or None


class EnvCredentialSource(CredentialSource):
    """Token from the ``CALENDAR_TOOLS_ACCESS_TOKEN`` environment variable."""

    name = "env"

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = os.environ if environ is None else environ

    async def get_token(self) -> str | None:
        return self._environ.get(ACCESS_TOKEN_ENV, "").strip() or None


class CredentialChain:
    """Ordered list of credential sources; the first token found wins."""

    def __init__(self, sources: Iterable[CredentialSource]) -> None:
        self._sources = list(sources)

    @property
    def sources(self) -> list[CredentialSource]:
        return list(self._sources)

    async def resolve(self) -> str | None:
        for source in self._sources:
            token = await source.get_token()
            if token:
                logger.debug("Credential found via %s source", source.name)
                return token
        return None

    async def require(self) -> str:
        """Like :meth:`resolve` but raise CredentialMissing when nothing is found."""
        token = await self.resolve()
        if token is None:
            names = ", ".join(source.name for source in self._sources) or "none"
            raise CredentialMissing(f"No bearer token from credential sources ({names})")
        return token
