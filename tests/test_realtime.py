import pytest
from starlette.websockets import WebSocketDisconnect

from src.realtime.hub import (
    ADMIN_ACTIVITY_ROOM,
    ADMIN_NOTIFICATIONS_ROOM,
    COUNT_UPDATE,
    NEW_ITEM,
    merchant_room,
    rooms_for,
)
from src.utils.auth_dep import create_access_token


def test_rooms_follow_role():
    assert rooms_for("ADMIN", "a-1") == [ADMIN_ACTIVITY_ROOM, ADMIN_NOTIFICATIONS_ROOM]
    assert rooms_for("MERCHANT", "m-1") == ["merchant:m-1"]
    assert rooms_for("USER", "u-1") == []


@pytest.mark.asyncio
async def test_merchant_rooms_are_isolated(hub, make_ws):
    m1, m2 = make_ws(), make_ws()
    await hub.add_subscriber(websocket=m1, user_id="m-1", role="MERCHANT")
    await hub.add_subscriber(websocket=m2, user_id="m-2", role="MERCHANT")

    await hub.emit_merchant_notification("m-1", {"id": "n-1"}, 1)

    assert [(m["event"], m["room"]) for m in m1.sent] == [
        (NEW_ITEM, merchant_room("m-1")),
        (COUNT_UPDATE, merchant_room("m-1")),
    ]
    assert m2.sent == []


@pytest.mark.asyncio
async def test_merchant_never_receives_admin_events(hub, make_ws):
    merchant, admin = make_ws(), make_ws()
    await hub.add_subscriber(websocket=merchant, user_id="m-1", role="MERCHANT")
    await hub.add_subscriber(websocket=admin, user_id="a-1", role="ADMIN")

    await hub.emit_activity_log({"id": "log-1"}, today_count=5)
    await hub.emit_admin_notification({"id": "n-1"}, 3)

    assert merchant.sent == []
    assert len(admin.sent) == 4


@pytest.mark.asyncio
async def test_emit_to_empty_room_is_noop(hub):
    assert await hub.emit(merchant_room("nobody"), NEW_ITEM, {"id": "n-1"}) == 0


@pytest.mark.asyncio
async def test_failed_send_drops_subscriber(hub, make_ws):
    broken, healthy = make_ws(fail=True), make_ws()
    await hub.add_subscriber(websocket=broken, user_id="a-1", role="ADMIN")
    await hub.add_subscriber(websocket=healthy, user_id="a-2", role="ADMIN")

    assert await hub.emit(ADMIN_ACTIVITY_ROOM, NEW_ITEM, {"id": "log-1"}) == 1
    assert await hub.room_size(ADMIN_ACTIVITY_ROOM) == 1
    assert await hub.room_size(ADMIN_NOTIFICATIONS_ROOM) == 1
    assert broken.closed_code == 1011
    assert healthy.closed_code is None


@pytest.mark.asyncio
async def test_disconnect_leaves_all_rooms(hub, make_ws):
    sub = await hub.add_subscriber(websocket=make_ws(), user_id="a-1", role="ADMIN")
    await hub.remove_subscriber(sub.client_id)

    assert await hub.room_size(ADMIN_ACTIVITY_ROOM) == 0
    assert await hub.room_size(ADMIN_NOTIFICATIONS_ROOM) == 0


# ---------- /ws ----------

def test_ws_without_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws"):
            pass
    assert exc.value.code == 4401


def test_ws_with_bad_token_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws?token=not-a-jwt"):
            pass
    assert exc.value.code == 4401


def test_ws_rejects_plain_users(client):
    token = create_access_token("u-1", "u@x.io", "USER")
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws?token={token}"):
            pass
    assert exc.value.code == 4403


def test_ws_admin_joins_admin_rooms(client):
    token = create_access_token("a-1", "a@x.io", "ADMIN")
    with client.websocket_connect("/ws", headers={"Authorization": f"Bearer {token}"}) as ws:
        hello = ws.receive_json()
        assert hello == {"event": "connected", "rooms": [ADMIN_ACTIVITY_ROOM, ADMIN_NOTIFICATIONS_ROOM]}
        ws.send_text("ping")
        assert ws.receive_json() == {"event": "pong"}


def test_ws_merchant_joins_own_room(client):
    token = create_access_token("m-1", "m@x.io", "MERCHANT")
    with client.websocket_connect(f"/ws?token={token}") as ws:
        assert ws.receive_json() == {"event": "connected", "rooms": ["merchant:m-1"]}
