from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import pytest
from fastapi.websockets import WebSocketState

from app.monitoring.metrics import realtime_events_total, realtime_persistence_failures_total
from app.repository import InMemoryRepository
from app.schemas import UserCreateData
from parley.realtime import ConnectionRegistry, EventRouter, PresenceCoordinator
from parley.realtime.router import DISPLACED_CLOSE_CODE

pytestmark = pytest.mark.anyio


class DummyWebSocket:
    def __init__(self) -> None:
        self.application_state = WebSocketState.CONNECTED
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None

    async def send_json(self, payload: dict[str, Any]) -> None:
        self.sent.append(payload)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = (code, reason)
        self.application_state = WebSocketState.DISCONNECTED

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [event for event in self.sent if event["type"] == event_type]


class BrokenWebSocket(DummyWebSocket):
    async def send_json(self, payload: dict[str, Any]) -> None:
        raise RuntimeError("socket is gone")


class FailingWritesRepository(InMemoryRepository):
    async def create_message(self, sender_id: int, receiver_id: int, content: str):
        raise RuntimeError("database is down")

    async def set_user_presence(self, user_id, is_online, last_seen):
        raise RuntimeError("database is down")


class SlowRepository(InMemoryRepository):
    def __init__(self) -> None:
        super().__init__()
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def create_message(self, sender_id: int, receiver_id: int, content: str):
        self.started.set()
        await self.release.wait()
        return await super().create_message(sender_id, receiver_id, content)


def frame(event_type: str, **payload: Any) -> str:
    return json.dumps({"type": event_type, "payload": payload})


async def make_router(repository=None, log=None, **kwargs):
    repository = repository or InMemoryRepository()
    for name in ("alice", "bob", "carol"):
        await repository.create_user(
            UserCreateData(username=name, display_name=name.title(), hashed_password="x")
        )
    registry: ConnectionRegistry = ConnectionRegistry()
    presence = PresenceCoordinator(registry, repository, log=log)
    router = EventRouter(registry, repository, presence, log=log, **kwargs)
    return router, registry, repository


async def connect(router: EventRouter, user_id: int, websocket: DummyWebSocket | None = None):
    websocket = websocket or DummyWebSocket()
    session = router.open(websocket)
    await router.handle_text(session, frame("authenticate", userId=user_id))
    return session, websocket


async def test_authenticate_registers_and_announces_to_others_only():
    router, registry, repository = await make_router()
    _, alice_ws = await connect(router, 1)
    bob_session, bob_ws = await connect(router, 2)

    assert bob_session.user_id == 2
    assert registry.lookup(2) is bob_ws
    assert alice_ws.of_type("status_change") == [
        {"type": "status_change", "payload": {"userId": 2, "isOnline": True}}
    ]
    assert bob_ws.of_type("status_change") == []
    assert (await repository.find_user(2)).is_online is True


async def test_events_before_authentication_are_dropped():
    router, registry, repository = await make_router()
    websocket = DummyWebSocket()
    session = router.open(websocket)
    dropped = realtime_events_total.value("message", "in", "dropped")

    await router.handle_text(session, frame("message", receiverId=2, content="hi"))

    assert realtime_events_total.value("message", "in", "dropped") == dropped + 1
    assert list(await repository.list_messages(1, 2)) == []
    assert websocket.sent == []
    assert len(registry) == 0


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2, 3]",
        json.dumps({"type": "dance", "payload": {}}),
        json.dumps({"type": "message"}),
        frame("message", receiverId="2", content="hi"),
        frame("message", receiverId=2),
        frame("typing", receiverId=2, isTyping="yes"),
    ],
)
async def test_malformed_frames_are_dropped_and_connection_stays_usable(raw):
    router, registry, repository = await make_router()
    session, websocket = await connect(router, 1)

    await router.handle_text(session, raw)
    await router.handle_text(session, frame("message", receiverId=2, content="still here"))

    assert websocket.closed is None
    assert [m.content for m in await repository.list_messages(1, 2)] == ["still here"]


async def test_second_authenticate_is_ignored():
    router, registry, _ = await make_router()
    session, websocket = await connect(router, 1)

    await router.handle_text(session, frame("authenticate", userId=2))

    assert session.user_id == 1
    assert registry.lookup(1) is websocket
    assert registry.lookup(2) is None


async def test_message_is_persisted_pushed_and_confirmed():
    router, _, repository = await make_router()
    alice_session, alice_ws = await connect(router, 1)
    _, bob_ws = await connect(router, 2)

    await router.handle_text(alice_session, frame("message", receiverId=2, content="hi"))

    stored = list(await repository.list_messages(1, 2))
    assert len(stored) == 1
    pushed = bob_ws.of_type("message")
    confirmed = alice_ws.of_type("message_sent")
    assert pushed == [{"type": "message", "payload": stored[0].to_wire()}]
    assert confirmed == [{"type": "message_sent", "payload": stored[0].to_wire()}]
    assert pushed[0]["payload"]["isRead"] is False
    assert pushed[0]["payload"]["senderId"] == 1


async def test_message_to_offline_receiver_is_still_confirmed():
    router, _, repository = await make_router()
    alice_session, alice_ws = await connect(router, 1)

    await router.handle_text(alice_session, frame("message", receiverId=3, content="later"))

    assert len(alice_ws.of_type("message_sent")) == 1
    assert [m.content for m in await repository.list_messages(3, 1)] == ["later"]


async def test_message_to_unknown_receiver_produces_no_push():
    router, _, _ = await make_router()
    alice_session, alice_ws = await connect(router, 1)
    failures = realtime_persistence_failures_total.value("create_message")

    await router.handle_text(alice_session, frame("message", receiverId=99, content="anyone?"))

    assert alice_ws.of_type("message_sent") == []
    assert realtime_persistence_failures_total.value("create_message") == failures


async def test_persistence_failure_skips_push_and_is_logged(caplog):
    log = logging.getLogger("tests.router")
    repository = FailingWritesRepository()
    router, _, _ = await make_router(repository, log=log)
    alice_session, alice_ws = await connect(router, 1)
    _, bob_ws = await connect(router, 2)
    failures = realtime_persistence_failures_total.value("create_message")

    with caplog.at_level(logging.ERROR, logger="tests.router"):
        await router.handle_text(alice_session, frame("message", receiverId=2, content="lost"))

    assert alice_ws.of_type("message_sent") == []
    assert bob_ws.of_type("message") == []
    assert realtime_persistence_failures_total.value("create_message") == failures + 1
    assert any("create_message" in record.getMessage() for record in caplog.records)


async def test_write_survives_cancellation_of_the_handler():
    repository = SlowRepository()
    router, _, _ = await make_router(repository)
    alice_session, alice_ws = await connect(router, 1)

    task = asyncio.create_task(
        router.handle_text(alice_session, frame("message", receiverId=2, content="durable"))
    )
    await repository.started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    repository.release.set()
    for _ in range(10):
        await asyncio.sleep(0)

    assert [m.content for m in await repository.list_messages(1, 2)] == ["durable"]
    assert alice_ws.of_type("message_sent") == []


async def test_read_receipt_notifies_sender():
    router, _, repository = await make_router()
    alice_session, alice_ws = await connect(router, 1)
    bob_session, _ = await connect(router, 2)
    await router.handle_text(alice_session, frame("message", receiverId=2, content="read me"))
    message_id = alice_ws.of_type("message_sent")[0]["payload"]["id"]

    await router.handle_text(bob_session, frame("read_receipt", messageId=message_id))

    receipts = alice_ws.of_type("read_receipt")
    stored = await repository.get_message(message_id)
    assert stored.is_read is True
    assert receipts == [
        {"type": "read_receipt", "payload": {"messageId": message_id, "readAt": stored.to_wire()["readAt"]}}
    ]


async def test_read_receipt_for_unknown_message_is_silent():
    router, _, _ = await make_router()
    _, alice_ws = await connect(router, 1)
    bob_session, bob_ws = await connect(router, 2)

    await router.handle_text(bob_session, frame("read_receipt", messageId=404))

    assert alice_ws.of_type("read_receipt") == []
    assert bob_ws.of_type("read_receipt") == []


async def test_repeated_read_receipt_is_pushed_once():
    router, _, repository = await make_router()
    alice_session, alice_ws = await connect(router, 1)
    bob_session, _ = await connect(router, 2)
    await router.handle_text(alice_session, frame("message", receiverId=2, content="hi"))
    message_id = alice_ws.of_type("message_sent")[0]["payload"]["id"]

    await router.handle_text(bob_session, frame("read_receipt", messageId=message_id))
    await router.handle_text(bob_session, frame("read_receipt", messageId=message_id))

    assert len(alice_ws.of_type("read_receipt")) == 1
    assert (await repository.get_message(message_id)).is_read is True


async def test_message_over_the_length_limit_is_dropped():
    router, _, repository = await make_router(max_content_length=5)
    alice_session, alice_ws = await connect(router, 1)
    _, bob_ws = await connect(router, 2)
    dropped = realtime_events_total.value("message", "in", "dropped")

    await router.handle_text(alice_session, frame("message", receiverId=2, content="x" * 6))

    assert realtime_events_total.value("message", "in", "dropped") == dropped + 1
    assert list(await repository.list_messages(1, 2)) == []
    assert alice_ws.of_type("message_sent") == []
    assert bob_ws.of_type("message") == []

    await router.handle_text(alice_session, frame("message", receiverId=2, content="  short  "))

    assert [m.content for m in await repository.list_messages(1, 2)] == ["short"]


@pytest.mark.parametrize("user_id", [0, -1])
async def test_authenticate_with_non_positive_id_is_dropped(user_id):
    router, registry, _ = await make_router()
    _, bob_ws = await connect(router, 2)
    websocket = DummyWebSocket()
    session = router.open(websocket)

    await router.handle_text(session, frame("authenticate", userId=user_id))

    assert session.authenticated is False
    assert registry.lookup(user_id) is None
    assert bob_ws.of_type("status_change") == []


async def test_typing_is_forwarded_without_persistence():
    router, _, repository = await make_router()
    alice_session, _ = await connect(router, 1)
    _, bob_ws = await connect(router, 2)

    await router.handle_text(alice_session, frame("typing", receiverId=2, isTyping=True))
    await router.handle_text(alice_session, frame("typing", receiverId=3, isTyping=True))

    assert bob_ws.of_type("typing") == [
        {"type": "typing", "payload": {"senderId": 1, "isTyping": True}}
    ]
    assert list(await repository.list_messages(1, 2)) == []


async def test_displaced_connection_is_closed_without_going_offline():
    router, registry, repository = await make_router()
    _, bob_ws = await connect(router, 2)
    old_session, old_ws = await connect(router, 1)
    new_session, new_ws = await connect(router, 1)

    assert old_ws.closed == (DISPLACED_CLOSE_CODE, "Superseded by a newer connection")
    assert registry.lookup(1) is new_ws

    await router.close(old_session)

    assert registry.lookup(1) is new_ws
    assert {"type": "status_change", "payload": {"userId": 1, "isOnline": False}} not in bob_ws.sent
    assert (await repository.find_user(1)).is_online is True

    await router.close(new_session)

    assert bob_ws.sent[-1] == {"type": "status_change", "payload": {"userId": 1, "isOnline": False}}
    assert (await repository.find_user(1)).is_online is False


async def test_displaced_connection_can_be_left_open():
    router, registry, _ = await make_router(close_displaced=False)
    _, old_ws = await connect(router, 1)
    _, new_ws = await connect(router, 1)

    assert old_ws.closed is None
    assert registry.lookup(1) is new_ws


async def test_closing_an_unauthenticated_session_is_a_noop():
    router, registry, _ = await make_router()
    _, bob_ws = await connect(router, 2)
    session = router.open(DummyWebSocket())

    await router.close(session)

    assert len(registry) == 1
    assert bob_ws.of_type("status_change") == []


async def test_presence_broadcast_survives_persistence_failure_and_broken_peer(caplog):
    log = logging.getLogger("tests.presence")
    router, _, _ = await make_router(FailingWritesRepository(), log=log)
    await connect(router, 3, BrokenWebSocket())
    _, bob_ws = await connect(router, 2)

    with caplog.at_level(logging.ERROR, logger="tests.presence"):
        await connect(router, 1)

    assert bob_ws.of_type("status_change")[-1]["payload"] == {"userId": 1, "isOnline": True}
    assert any("presence" in record.getMessage() for record in caplog.records)
