from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from sqlalchemy.orm import Session
import structlog

from ..db import get_db
from ..auth.security import user_from_token
from ..services.change_feed import COLLECTIONS, hub

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.websocket("/ws")
async def ws_changes(
    websocket: WebSocket,
    token: Optional[str] = None,
    collections: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """
    Live change feed. `collections` is a comma-separated list; unknown
    names are ignored and an empty list subscribes to everything.
    """
    if not token:
        await websocket.close(code=4401)
        return
    try:
        user = user_from_token(token, db)
    except HTTPException:
        await websocket.close(code=4401)
        return

    wanted = [c.strip() for c in (collections or "").split(",") if c.strip() in COLLECTIONS]
    if not wanted:
        wanted = sorted(COLLECTIONS)

    await websocket.accept()
    await hub.subscribe(websocket, wanted)
    logger.info("change_feed_connected", user_id=str(user.id), collections=wanted)
    await websocket.send_json({"event": "subscribed", "data": {"collections": wanted}})
    try:
        while True:
            data = await websocket.receive_text()
            if data and data.strip().lower() in {"ping", "keepalive"}:
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        logger.info("change_feed_disconnected", user_id=str(user.id))
    finally:
        await hub.unsubscribe(websocket)
