from __future__ import annotations

import asyncio
import hashlib
from functools import partial
from typing import Any, Generator, Mapping, Optional, Union

try:  # pragma: no cover - availability depends on environment
    from Cryptodome.Hash import SHA256 as _CryptodomeSHA256  # type: ignore
    _HAS_CRYPTODOME = True
except ImportError:  # pragma: no cover - backend simply not offered
    _CryptodomeSHA256 = None  # type: ignore
    _HAS_CRYPTODOME = False

from .canon import canonicalize, strip
from .errors import HashUnavailableError
from .textutil import utf8_bytes


BACKEND_HASHLIB = "hashlib"
BACKEND_CRYPTODOME = "cryptodome"


def available_backends() -> tuple[str, ...]:
    names = []
    if "sha256" in hashlib.algorithms_available:
        names.append(BACKEND_HASHLIB)
    if _HAS_CRYPTODOME:
        names.append(BACKEND_CRYPTODOME)
    return tuple(names)


class HashProvider:
    """SHA-256 over UTF-8 with a blocking and an awaitable entry point.

    Both entry points return the same lowercase hex digest for the same
    input. The backend is resolved once, at construction; a missing
    primitive is an initialization error rather than a per-call one.
    """

    def __init__(self, backend: Optional[str] = None):
        names = available_backends()
        if backend is None:
            if not names:
                raise HashUnavailableError("no SHA-256 implementation available")
            backend = names[0]
        elif backend not in names:
            raise HashUnavailableError(f"SHA-256 backend not available: {backend}")
        self.backend = backend

    def _digest(self, data: bytes) -> str:
        if self.backend == BACKEND_CRYPTODOME:
            return _CryptodomeSHA256.new(data).hexdigest()
        return hashlib.sha256(data).hexdigest()

    def sha256_hex(self, data: Union[str, bytes]) -> str:
        return self._digest(utf8_bytes(data))

    async def sha256_hex_async(self, data: Union[str, bytes]) -> str:
        payload = utf8_bytes(data)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(self._digest, payload))

    def canon_sha256(self, obj: Mapping[str, Any], minus: Optional[str] = None) -> str:
        body = strip(obj, [minus]) if minus else obj
        return self._digest(canonicalize(body))

    async def canon_sha256_async(self, obj: Mapping[str, Any], minus: Optional[str] = None) -> str:
        body = strip(obj, [minus]) if minus else obj
        return await self.sha256_hex_async(canonicalize(body))


_default = HashProvider()


def default_provider() -> HashProvider:
    return _default


def sha256_hex(data: Union[str, bytes]) -> str:
    return _default.sha256_hex(data)


async def sha256_hex_async(data: Union[str, bytes]) -> str:
    return await _default.sha256_hex_async(data)


def canon_sha256(obj: Mapping[str, Any], minus: Optional[str] = None) -> str:
    """SHA-256 of the canonical form of ``obj`` without its ``minus`` field."""
    return _default.canon_sha256(obj, minus)


def run_hashing(steps: Generator[bytes, str, Any], provider: Optional[HashProvider] = None) -> Any:
    """Drive ``steps`` to completion, answering each yielded payload with its digest.

    ``steps`` is a generator that yields byte payloads, receives their SHA-256
    hex digests and finally returns its result.
    """
    h = provider or _default
    try:
        payload = next(steps)
        while True:
            payload = steps.send(h.sha256_hex(payload))
    except StopIteration as stop:
        return stop.value


async def run_hashing_async(steps: Generator[bytes, str, Any], provider: Optional[HashProvider] = None) -> Any:
    """Awaitable :func:`run_hashing`; digests come from the asynchronous path."""
    h = provider or _default
    try:
        payload = next(steps)
        while True:
            payload = steps.send(await h.sha256_hex_async(payload))
    except StopIteration as stop:
        return stop.value
