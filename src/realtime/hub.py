# src/realtime/hub.py
# -----------------------------------------------------------------------------
# Реестр WebSocket-подписчиков и комнаты для пушей
# -----------------------------------------------------------------------------
# Комнаты:
#   admin:activity-logs  - лента аудит-лога (только ADMIN)
#   admin:notifications  - общие админские уведомления
#   merchant:<user_id>   - уведомления конкретного мерчанта
#
# Доставка best-effort: нет подписчиков - публикация ничего не делает, бэклога нет.
# Членство в комнатах меняется только при подключении/отключении.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
from uuid import uuid4

log = logging.getLogger(__name__)

ADMIN_ACTIVITY_ROOM = "admin:activity-logs"
ADMIN_NOTIFICATIONS_ROOM = "admin:notifications"

NEW_ITEM = "new-item"
COUNT_UPDATE = "count-update"

SEND_TIMEOUT_SECONDS = 5.0
# код закрытия сокета, отставшего от пушей (клиент переподключается и перечитывает)
CLOSE_SEND_FAILED = 1011


def merchant_room(user_id: str) -> str:
    return f"merchant:{user_id}"


def rooms_for(role: str, user_id: str) -> List[str]:
    """Комнаты выводятся из личности, а не из запроса клиента."""
    if role == "ADMIN":
        return [ADMIN_ACTIVITY_ROOM, ADMIN_NOTIFICATIONS_ROOM]
    if role == "MERCHANT":
        return [merchant_room(user_id)]
    return []


@dataclass(eq=False)
class Subscriber:
    client_id: str
    user_id: str
    role: str
    websocket: Any
    rooms: Set[str] = field(default_factory=set)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, message: Dict[str, Any]) -> bool:
        async with self.send_lock:
            try:
                await asyncio.wait_for(self.websocket.send_json(message), timeout=SEND_TIMEOUT_SECONDS)
                return True
            except Exception as exc:
                log.warning("realtime: send to %s failed: %s", self.client_id, exc)
                return False

    async def close(self, code: int) -> None:
        try:
            await asyncio.wait_for(self.websocket.close(code=code), timeout=SEND_TIMEOUT_SECONDS)
        except Exception as exc:
            log.debug("realtime: close of %s failed: %s", self.client_id, exc)


class RealtimeHub:
    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[str, Subscriber]] = {}
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

    async def add_subscriber(self, *, websocket: Any, user_id: str, role: str) -> Subscriber:
        subscriber = Subscriber(
            client_id=str(uuid4()),
            user_id=str(user_id),
            role=role,
            websocket=websocket,
            rooms=set(rooms_for(role, str(user_id))),
        )
        async with self._lock:
            self._subscribers[subscriber.client_id] = subscriber
            for room in subscriber.rooms:
                self._rooms.setdefault(room, {})[subscriber.client_id] = subscriber
        return subscriber

    async def remove_subscriber(self, client_id: str) -> None:
        async with self._lock:
            subscriber = self._subscribers.pop(client_id, None)
            if subscriber is None:
                return
            for room in subscriber.rooms:
                members = self._rooms.get(room)
                if not members:
                    continue
                members.pop(client_id, None)
                if not members:
                    self._rooms.pop(room, None)

    async def room_size(self, room: str) -> int:
        async with self._lock:
            return len(self._rooms.get(room, {}))

    async def emit(self, room: str, event: str, data: Any) -> int:
        """
        Отправить событие всем подписчикам комнаты. Возвращает число доставленных.
        Подписчик, которому не удалось отправить, выкидывается из реестра,
        а его сокет закрывается с кодом 1011.
        """
        async with self._lock:
            members = list(self._rooms.get(room, {}).values())
        if not members:
            return 0

        message = {"event": event, "room": room, "data": data}
        results = await asyncio.gather(*(m.send(message) for m in members))
        delivered = 0
        for member, ok in zip(members, results):
            if ok:
                delivered += 1
            else:
                await self.remove_subscriber(member.client_id)
                await member.close(CLOSE_SEND_FAILED)
        return delivered

    # ---------- удобные обёртки для воркеров ----------
    async def emit_activity_log(self, log_item: Dict[str, Any], today_count: Optional[int] = None) -> None:
        await self.emit(ADMIN_ACTIVITY_ROOM, NEW_ITEM, log_item)
        if today_count is not None:
            await self.emit(ADMIN_ACTIVITY_ROOM, COUNT_UPDATE, {"count": today_count})

    async def emit_admin_notification(self, notification: Dict[str, Any], unread_count: int) -> None:
        await self.emit(ADMIN_NOTIFICATIONS_ROOM, NEW_ITEM, notification)
        await self.emit(ADMIN_NOTIFICATIONS_ROOM, COUNT_UPDATE, {"count": unread_count})

    async def emit_merchant_notification(
        self,
        merchant_user_id: str,
        notification: Dict[str, Any],
        unread_count: int,
    ) -> None:
        room = merchant_room(merchant_user_id)
        await self.emit(room, NEW_ITEM, notification)
        await self.emit(room, COUNT_UPDATE, {"count": unread_count})
