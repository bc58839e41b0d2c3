"""End-to-end scenarios over ``/ws`` using FastAPI's TestClient."""

from __future__ import annotations

import time
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from fastapi.websockets import WebSocketDisconnect

from app.config import get_settings
from parley.realtime import RealtimeServices


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition was not met in time"
        time.sleep(0.01)


def authenticate(connection, services: RealtimeServices, user_id: int) -> None:
    connection.send_json({"type": "authenticate", "payload": {"userId": user_id}})
    wait_until(lambda: services.registry.lookup(user_id) is not None)
    wait_until(lambda: _is_online(connection, services, user_id))


def _is_online(connection, services: RealtimeServices, user_id: int) -> bool:
    user = connection.portal.call(services.repository.find_user, user_id)
    return user is not None and user.is_online


@pytest.fixture()
def pair(make_user):
    alice, alice_headers = make_user("alice")
    bob, bob_headers = make_user("bob")
    return (alice, alice_headers), (bob, bob_headers)


def test_message_is_pushed_to_receiver_and_confirmed_to_sender(client: TestClient, services, pair):
    (alice, _), (bob, bob_headers) = pair

    with client.websocket_connect("/ws") as alice_ws:
        authenticate(alice_ws, services, alice["id"])
        with client.websocket_connect("/ws") as bob_ws:
            authenticate(bob_ws, services, bob["id"])
            assert alice_ws.receive_json() == {
                "type": "status_change",
                "payload": {"userId": bob["id"], "isOnline": True},
            }

            alice_ws.send_json(
                {"type": "message", "payload": {"receiverId": bob["id"], "content": "hi"}}
            )
            pushed = bob_ws.receive_json()
            confirmed = alice_ws.receive_json()

            assert pushed["type"] == "message"
            assert pushed["payload"]["senderId"] == alice["id"]
            assert pushed["payload"]["receiverId"] == bob["id"]
            assert pushed["payload"]["content"] == "hi"
            assert pushed["payload"]["isRead"] is False
            assert confirmed == {"type": "message_sent", "payload": pushed["payload"]}

            history = client.get(f"/api/messages/{alice['id']}", headers=bob_headers).json()
            assert [item["id"] for item in history] == [pushed["payload"]["id"]]


def test_read_receipt_reaches_sender_and_is_visible_on_fetch(client: TestClient, services, pair):
    (alice, alice_headers), (bob, _) = pair

    with client.websocket_connect("/ws") as alice_ws:
        authenticate(alice_ws, services, alice["id"])
        with client.websocket_connect("/ws") as bob_ws:
            authenticate(bob_ws, services, bob["id"])
            alice_ws.receive_json()  # bob came online

            alice_ws.send_json(
                {"type": "message", "payload": {"receiverId": bob["id"], "content": "hi"}}
            )
            message_id = bob_ws.receive_json()["payload"]["id"]
            alice_ws.receive_json()  # message_sent

            bob_ws.send_json({"type": "read_receipt", "payload": {"messageId": message_id}})
            receipt = alice_ws.receive_json()

            assert receipt["type"] == "read_receipt"
            assert receipt["payload"]["messageId"] == message_id
            assert receipt["payload"]["readAt"]

    history = client.get(f"/api/messages/{bob['id']}", headers=alice_headers).json()
    assert history[0]["isRead"] is True
    assert history[0]["readAt"] == receipt["payload"]["readAt"]


def test_disconnect_broadcasts_offline_status(client: TestClient, services, pair):
    (alice, _), (bob, _) = pair

    with client.websocket_connect("/ws") as alice_ws:
        authenticate(alice_ws, services, alice["id"])
        with client.websocket_connect("/ws") as bob_ws:
            authenticate(bob_ws, services, bob["id"])
            alice_ws.receive_json()  # bob came online
            bob_ws.close(1000)
            offline = alice_ws.receive_json()

        assert offline == {"type": "status_change", "payload": {"userId": bob["id"], "isOnline": False}}
        assert services.registry.lookup(bob["id"]) is None


def test_typing_is_forwarded(client: TestClient, services, pair):
    (alice, _), (bob, _) = pair

    with client.websocket_connect("/ws") as alice_ws:
        authenticate(alice_ws, services, alice["id"])
        with client.websocket_connect("/ws") as bob_ws:
            authenticate(bob_ws, services, bob["id"])
            alice_ws.receive_json()  # bob came online

            alice_ws.send_json(
                {"type": "typing", "payload": {"receiverId": bob["id"], "isTyping": True}}
            )

            assert bob_ws.receive_json() == {
                "type": "typing",
                "payload": {"senderId": alice["id"], "isTyping": True},
            }


def test_malformed_frames_do_not_close_the_connection(client: TestClient, services, pair):
    (alice, _), (bob, _) = pair

    with client.websocket_connect("/ws") as alice_ws:
        alice_ws.send_text("definitely not json")
        alice_ws.send_json({"type": "message", "payload": {"receiverId": bob["id"], "content": "early"}})
        authenticate(alice_ws, services, alice["id"])
        alice_ws.send_json({"type": "unknown", "payload": {}})
        alice_ws.send_bytes(b'{"type": "message", "payload": {"receiverId": 2}}')
        alice_ws.send_json(
            {"type": "message", "payload": {"receiverId": bob["id"], "content": "made it"}}
        )

        confirmed = alice_ws.receive_json()

    assert confirmed["type"] == "message_sent"
    assert confirmed["payload"]["content"] == "made it"


def test_newer_connection_displaces_the_older_one(client: TestClient, services, pair):
    (alice, _), (bob, _) = pair

    with client.websocket_connect("/ws") as bob_ws:
        authenticate(bob_ws, services, bob["id"])
        with client.websocket_connect("/ws") as first:
            authenticate(first, services, alice["id"])
            assert bob_ws.receive_json()["payload"] == {"userId": alice["id"], "isOnline": True}
            with client.websocket_connect("/ws") as second:
                second.send_json({"type": "authenticate", "payload": {"userId": alice["id"]}})

                with pytest.raises(WebSocketDisconnect) as excinfo:
                    first.receive_json()
                assert excinfo.value.code == 4000

                assert bob_ws.receive_json()["payload"] == {"userId": alice["id"], "isOnline": True}
                assert services.registry.lookup(alice["id"]) is not None

                second.send_json(
                    {"type": "message", "payload": {"receiverId": bob["id"], "content": "from second"}}
                )
                assert bob_ws.receive_json()["payload"]["content"] == "from second"
                assert second.receive_json()["type"] == "message_sent"


def test_rest_send_is_pushed_over_live_connections(client: TestClient, services, pair):
    (alice, alice_headers), (bob, bob_headers) = pair

    with client.websocket_connect("/ws") as bob_ws:
        authenticate(bob_ws, services, bob["id"])
        with client.websocket_connect("/ws") as alice_ws:
            authenticate(alice_ws, services, alice["id"])
            assert bob_ws.receive_json()["type"] == "status_change"

            sent = client.post(
                "/api/messages",
                json={"receiverId": bob["id"], "content": "via rest"},
                headers=alice_headers,
            ).json()

            assert bob_ws.receive_json() == {"type": "message", "payload": sent}
            assert alice_ws.receive_json() == {"type": "message_sent", "payload": sent}

            read = client.patch(f"/api/messages/{sent['id']}/read", headers=bob_headers)
            assert read.status_code == 200
            assert alice_ws.receive_json() == {
                "type": "read_receipt",
                "payload": {"messageId": sent["id"], "readAt": read.json()["readAt"]},
            }

            again = client.patch(f"/api/messages/{sent['id']}/read", headers=bob_headers)
            assert again.json()["readAt"] == read.json()["readAt"]
            bob_ws.send_json({"type": "typing", "payload": {"receiverId": alice["id"], "isTyping": False}})
            assert alice_ws.receive_json()["type"] == "typing"


def test_repeated_live_read_receipt_reaches_sender_once(client: TestClient, services, pair):
    (alice, _), (bob, _) = pair

    with client.websocket_connect("/ws") as alice_ws:
        authenticate(alice_ws, services, alice["id"])
        with client.websocket_connect("/ws") as bob_ws:
            authenticate(bob_ws, services, bob["id"])
            alice_ws.receive_json()  # bob came online

            alice_ws.send_json(
                {"type": "message", "payload": {"receiverId": bob["id"], "content": "hi"}}
            )
            message_id = bob_ws.receive_json()["payload"]["id"]
            alice_ws.receive_json()  # message_sent

            bob_ws.send_json({"type": "read_receipt", "payload": {"messageId": message_id}})
            bob_ws.send_json({"type": "read_receipt", "payload": {"messageId": message_id}})
            bob_ws.send_json({"type": "typing", "payload": {"receiverId": alice["id"], "isTyping": True}})

            assert alice_ws.receive_json()["type"] == "read_receipt"
            assert alice_ws.receive_json()["type"] == "typing"


def test_over_long_live_message_is_not_stored(client: TestClient, services, pair):
    (alice, alice_headers), (bob, _) = pair
    limit = get_settings().chat_message_max_length

    with client.websocket_connect("/ws") as alice_ws:
        authenticate(alice_ws, services, alice["id"])
        alice_ws.send_json(
            {"type": "message", "payload": {"receiverId": bob["id"], "content": "x" * (limit + 1)}}
        )
        alice_ws.send_json(
            {"type": "message", "payload": {"receiverId": bob["id"], "content": "  fits  "}}
        )

        confirmed = alice_ws.receive_json()

    assert confirmed["payload"]["content"] == "fits"
    history = client.get(f"/api/messages/{bob['id']}", headers=alice_headers).json()
    assert [item["content"] for item in history] == ["fits"]
