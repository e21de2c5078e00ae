"""Process-wide lazily created handles for expensive clients."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SharedHandle(Generic[T]):
    """Creates a client on first use and hands the same instance to every caller.

    Concurrent first callers wait on one lock, so the factory runs once. A factory
    failure leaves the handle empty and the next ``get`` retries.
    """

    def __init__(self, factory: Callable[[], T | Awaitable[T]], *, name: str = "client") -> None:
        self._factory = factory
        self._name = name
        self._value: T | None = None
        self._lock: asyncio.Lock | None = None

    async def get(self) -> T:
        if self._value is not None:
            return self._value
        if self._lock is None:
            self._lock = asyncio.Lock()
        async with self._lock:
            if self._value is None:
                created = self._factory()
                if inspect.isawaitable(created):
                    created = await created
                self._value = created
                logger.info("Initialised shared %s", self._name)
        return self._value

    def peek(self) -> T | None:
        return self._value

    async def aclose(self) -> None:
        value, self._value = self._value, None
        if value is None:
            return
        closer = getattr(value, "aclose", None) or getattr(value, "close", None)
        if closer is None:
            return
        result = closer()
        if inspect.isawaitable(result):
            await result
        logger.info("Closed shared %s", self._name)
