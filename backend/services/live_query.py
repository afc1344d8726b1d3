"""
Phoenix Tracker - Requêtes temps réel

Un LiveQuery pousse des snapshots COMPLETS (pas de diff): un premier à
l'ouverture, puis un par événement du change stream MongoDB.

L'appelant DOIT appeler cancel() (ou sortir du `async with`) à la fin,
sinon le change stream reste ouvert.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, List

logger = logging.getLogger("live_query")

_CLOSED = object()

WATCHED_OPERATIONS = ["insert", "update", "replace", "delete"]


class LiveQuery:
    """Flux asynchrone de snapshots pour une requête filtrée"""

    def __init__(self, collection, fetch: Callable[[], Awaitable[List[dict]]], name: str = ""):
        self._collection = collection
        self._fetch = fetch
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task = None
        self.name = name
        self.closed = False

    def start(self) -> "LiveQuery":
        if self._task is None and not self.closed:
            self._task = asyncio.create_task(self._run())
        return self

    async def _run(self):
        try:
            await self._queue.put(await self._fetch())
            pipeline = [{"$match": {"operationType": {"$in": WATCHED_OPERATIONS}}}]
            async with self._collection.watch(pipeline) as stream:
                async for _change in stream:
                    await self._queue.put(await self._fetch())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Live query {self.name} stopped: {e}")
            await self._queue.put(e)

    def cancel(self):
        """Ferme le flux; idempotent"""
        if self.closed:
            return
        self.closed = True
        if self._task is not None:
            self._task.cancel()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self.start()

    async def __anext__(self) -> List[dict]:
        if self.closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            self.cancel()
            raise item
        return item

    async def __aenter__(self) -> "LiveQuery":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb):
        self.cancel()


def pump(live: LiveQuery, on_change: Callable) -> Callable[[], None]:
    """
    Rejoue chaque snapshot vers on_change (fonction ou coroutine).
    Retourne la fonction de désabonnement.
    """
    async def _consume():
        try:
            async for snapshot in live:
                result = on_change(snapshot)
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # Pas d'appelant pour recevoir l'erreur: la tâche de fond la journalise
            logger.error(f"Subscription {live.name} failed: {e}")

    consumer = asyncio.create_task(_consume())

    def unsubscribe():
        live.cancel()
        consumer.cancel()

    return unsubscribe
