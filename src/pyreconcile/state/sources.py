"""Loaders for the external desired-state document."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Protocol

import aiohttp

from pyreconcile.exceptions import DesiredStateError
from pyreconcile.models.desired_state import DesiredStateSnapshot

_logger = logging.getLogger(__name__)


class DesiredStateSource(Protocol):
    """Where the desired-state JSON document is read from."""

    @property
    def location(self) -> str:
        ...

    async def read(self) -> str:
        ...

    async def close(self) -> None:
        ...


def parse_document(text: str, *, origin: str) -> DesiredStateSnapshot:
    """Parse and validate a desired-state document into a complete snapshot."""
    try:
        document = json.loads(text)
    except (ValueError, RecursionError) as exc:
        raise DesiredStateError(f"error parsing expected states: {exc}", location=origin) from exc
    return DesiredStateSnapshot.from_document(document, origin=origin)


class FileDesiredStateSource:
    """Reads a JSON file in the default executor."""

    def __init__(self, path: str | Path, *, encoding: str = "utf-8") -> None:
        self._path = Path(path)
        self._encoding = encoding

    @property
    def location(self) -> str:
        return str(self._path)

    async def read(self) -> str:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._path.read_text, self._encoding)
        except (OSError, UnicodeDecodeError) as exc:
            raise DesiredStateError(f"could not read {self._path}: {exc}", location=self.location) from exc

    async def close(self) -> None:
        return None


class HttpDesiredStateSource:
    """Fetches the document over HTTP(S) with aiohttp."""

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._external_session = session is not None
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def location(self) -> str:
        return self._url

    async def read(self) -> str:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        try:
            async with self._session.get(self._url, timeout=self._timeout) as resp:
                text = await resp.text()
                if resp.status != 200:
                    raise DesiredStateError(
                        f"HTTP {resp.status} from {self._url}: {text[:200]}",
                        location=self._url,
                    )
                return text
        except DesiredStateError:
            raise
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise DesiredStateError(f"request to {self._url} failed: {exc}", location=self._url) from exc

    async def close(self) -> None:
        if not self._external_session and self._session is not None:
            await self._session.close()
        self._session = None


def source_for(location: str, *, session: aiohttp.ClientSession | None = None) -> DesiredStateSource:
    """Pick a loader for *location*: ``http(s)://`` URLs or filesystem paths."""
    if location.startswith(("http://", "https://")):
        return HttpDesiredStateSource(location, session=session)
    return FileDesiredStateSource(location)
