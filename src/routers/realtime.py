# src/routers/realtime.py
# WebSocket /ws - realtime-канал для админки и кабинета мерчанта.
# -----------------------------------------------------------------------------
# Токен: заголовок "Authorization: Bearer ..." или ?token=... Проверяется ДО accept():
#   нет/невалидный токен → close 4401, роль не ADMIN/MERCHANT → close 4403.
# Комнаты выводятся из роли (см. src/realtime/hub.py), клиент их не выбирает.
# Сервер только пушит; входящие сообщения игнорируются ("ping" → "pong").

from __future__ import annotations

import logging
from typing import Optional

import jwt
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..realtime.hub import rooms_for
from ..utils.auth_dep import decode_access_token

log = logging.getLogger(__name__)

router = APIRouter()

WS_CLOSE_UNAUTHORIZED = 4401
WS_CLOSE_FORBIDDEN = 4403


def _token_from(websocket: WebSocket) -> Optional[str]:
    header = websocket.headers.get("authorization") or ""
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return websocket.query_params.get("token") or None


@router.websocket("/ws")
async def realtime_ws(websocket: WebSocket) -> None:
    token = _token_from(websocket)
    if not token:
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return
    try:
        user = decode_access_token(token)
    except (jwt.PyJWTError, ValueError):
        await websocket.close(code=WS_CLOSE_UNAUTHORIZED)
        return

    if not rooms_for(user.role, user.user_id):
        await websocket.close(code=WS_CLOSE_FORBIDDEN)
        return

    hub = websocket.app.state.pipeline.hub
    await websocket.accept()
    subscriber = await hub.add_subscriber(websocket=websocket, user_id=user.user_id, role=user.role)
    log.info("realtime: %s %s connected (%s)", user.role, user.user_id, subscriber.client_id)

    try:
        await subscriber.send({"event": "connected", "rooms": sorted(subscriber.rooms)})
        while True:
            message = await websocket.receive_text()
            if message == "ping":
                await subscriber.send({"event": "pong"})
    except WebSocketDisconnect:
        pass
    except Exception:
        log.exception("realtime: connection %s failed", subscriber.client_id)
    finally:
        await hub.remove_subscriber(subscriber.client_id)
        log.info("realtime: %s disconnected", subscriber.client_id)
