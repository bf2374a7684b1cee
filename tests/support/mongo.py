"""Async facade over mongomock shaped like the motor API the repositories use.

Each call yields to the event loop first, so concurrent coroutines interleave
between storage operations the way they would against a real server.
"""

import asyncio

import mongomock


class AsyncMockCursor:

    def __init__(self, cursor):
        self._cursor = cursor

    def sort(self, *args, **kwargs):
        self._cursor.sort(*args, **kwargs)
        return self

    def limit(self, count):
        self._cursor.limit(count)
        return self

    async def to_list(self, length=None):
        await asyncio.sleep(0)
        items = list(self._cursor)
        return items if length is None else items[:length]


class AsyncMockCollection:

    def __init__(self, collection):
        self.sync = collection

    def find(self, *args, **kwargs):
        return AsyncMockCursor(self.sync.find(*args, **kwargs))

    def __getattr__(self, name):
        method = getattr(self.sync, name)

        async def call(*args, **kwargs):
            await asyncio.sleep(0)
            return method(*args, **kwargs)

        return call


class AsyncMockDatabase:

    def __init__(self, name: str = "chatsync_test"):
        self._client = mongomock.MongoClient(tz_aware=True)
        self.sync = self._client[name]
        self._collections = {}

    def __getitem__(self, name):
        if name not in self._collections:
            self._collections[name] = AsyncMockCollection(self.sync[name])
        return self._collections[name]

    def get_collection(self, name):
        return self[name]

    async def command(self, command, **kwargs):
        return self.sync.command(command, **kwargs)
