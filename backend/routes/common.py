"""
Phoenix Tracker - Helpers communs aux routes de données
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Callable

from fastapi import HTTPException, WebSocket, WebSocketDisconnect

from routes.auth import load_session
from services.errors import NotFoundError, UnavailableError, ValidationError
from services.live_query import LiveQuery
from services.session_cache import SessionContext

logger = logging.getLogger("routes")


@contextmanager
def service_errors():
    """Erreurs métier → HTTP. Les erreurs MongoDB ne sont pas converties."""
    try:
        yield
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))


async def stream_live(
    websocket: WebSocket,
    db,
    token: str,
    open_live: Callable[[SessionContext], LiveQuery],
    transform: Callable = None
):
    """
    Pousse chaque snapshot complet sur la websocket.
    La requête temps réel est fermée dès la déconnexion du client.
    """
    try:
        context = await load_session(websocket.app, db, token)
        if not context.team_id:
            raise HTTPException(status_code=503, detail="Profil utilisateur non résolu")
        with service_errors():
            live = open_live(context)
    except HTTPException as e:
        await websocket.close(code=1008, reason=str(e.detail))
        return

    await websocket.accept()

    async def _watch_disconnect():
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            live.cancel()

    watcher = asyncio.create_task(_watch_disconnect())
    try:
        async for snapshot in live:
            items = transform(snapshot) if transform else snapshot
            await websocket.send_json({"items": items, "count": len(items)})
    except WebSocketDisconnect:
        pass
    finally:
        live.cancel()
        watcher.cancel()
        logger.info(f"Live query closed: {live.name}")
