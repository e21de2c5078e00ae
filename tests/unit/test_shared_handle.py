import asyncio

import pytest

from signal_chat.shared import SharedHandle


class _Client:
    def __init__(self) -> None:
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_concurrent_first_use_creates_one_instance() -> None:
    created: list[_Client] = []

    async def factory() -> _Client:
        await asyncio.sleep(0)
        client = _Client()
        created.append(client)
        return client

    handle = SharedHandle(factory, name="test client")

    async def scenario():
        return await asyncio.gather(*(handle.get() for _ in range(10)))

    clients = asyncio.run(scenario())

    assert len(created) == 1
    assert all(client is created[0] for client in clients)


def test_failed_factory_is_retried() -> None:
    attempts = {"count": 0}

    def factory() -> _Client:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise ConnectionError("not yet")
        return _Client()

    handle = SharedHandle(factory)

    with pytest.raises(ConnectionError):
        asyncio.run(handle.get())
    assert handle.peek() is None
    assert isinstance(asyncio.run(handle.get()), _Client)


def test_aclose_closes_and_empties_handle() -> None:
    handle = SharedHandle(_Client)

    client = asyncio.run(handle.get())
    asyncio.run(handle.aclose())

    assert client.closed is True
    assert handle.peek() is None
