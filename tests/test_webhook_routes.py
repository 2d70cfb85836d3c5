"""Tests for the relay HTTP surface: webhook, subscriptions, health and debug routes."""

import asyncio
import json
import sys
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from fastapi.testclient import TestClient

# Allow importing src when running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import SESSION_COOKIE_NAME
from src.graph.models import UserProfile
from src.webhook.server import create_app
from tests.graph_fakes import FakeGraph, FakeIdentity, make_settings


class RecordingConnection:
    def __init__(self):
        self.sent: list[dict] = []

    async def send(self, payload: str) -> None:
        self.sent.append(json.loads(payload))

    @property
    def events(self) -> list[dict]:
        return [p for p in self.sent if p.get("type") != "connected"]


class RelayAppTestCase(unittest.TestCase):
    settings_overrides: dict = {}

    def setUp(self):
        self.fake = FakeGraph()
        self.app = create_app(
            settings=make_settings(**self.settings_overrides),
            identity=FakeIdentity(),
            http_client=self.fake.client(),
        )
        self.client = TestClient(self.app)
        self.connection = RecordingConnection()
        asyncio.run(self.app.state.push_registry.subscribe(self.connection))

    def sign_in(self) -> None:
        self.app.state.sessions.create(
            "sid-1",
            "user-token",
            datetime.now(timezone.utc) + timedelta(hours=1),
            UserProfile(displayName="Ada Lovelace", mail="ada@example.com"),
        )
        self.client.cookies.set(SESSION_COOKIE_NAME, "sid-1")


class TestWebhookEndpoint(RelayAppTestCase):
    def test_validation_token_echoed_as_plain_text(self):
        response = self.client.post("/webhook", params={"validationToken": "Validation: abc 123"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/plain"))
        self.assertEqual(response.text, "Validation: abc 123")
        self.assertEqual(self.connection.events, [])

    def test_any_body_is_acknowledged(self):
        for body in (b"", b"not json", b'{"value": "nope"}', b'{"value": []}'):
            with self.subTest(body=body):
                response = self.client.post(
                    "/webhook", content=body, headers={"Content-Type": "application/json"}
                )
                self.assertEqual(response.status_code, 202)
                self.assertEqual(response.json(), {"status": "accepted"})
        self.assertEqual(self.connection.events, [])

    def test_unknown_notification_pushed_after_ack(self):
        response = self.client.post(
            "/webhook",
            json={"value": [{"subscriptionId": "s", "changeType": "deleted", "resource": "/me/events/1"}]},
        )
        self.assertEqual(response.status_code, 202)
        self.assertEqual(len(self.connection.events), 1)
        self.assertEqual(self.connection.events[0]["type"], "unknown")

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok", "connections": 1})


class TestEventsEndpoint(unittest.TestCase):
    def test_stream_opens_with_connected_frame(self):
        app = create_app(settings=make_settings(), identity=FakeIdentity(), http_client=FakeGraph().client())
        registry = app.state.push_registry
        result = {}

        with TestClient(app) as client:

            def open_stream():
                result["response"] = client.get("/events")

            reader = threading.Thread(target=open_stream, daemon=True)
            reader.start()
            deadline = time.monotonic() + 5
            while len(registry) == 0 and time.monotonic() < deadline:
                time.sleep(0.01)
            self.assertEqual(len(registry), 1)
            # Closing the connection ends the otherwise endless response
            client.portal.call(registry.close_all)
            reader.join(timeout=5)
            self.assertFalse(reader.is_alive())

        response = result["response"]
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
        self.assertEqual(response.headers["cache-control"], "no-cache")
        self.assertTrue(response.text.startswith('data: {"type": "connected"}\n\n'))
        self.assertEqual(len(registry), 0)


class TestSubscriptionRoutes(RelayAppTestCase):
    def test_requires_session(self):
        for method, path in (
            ("GET", "/subscriptions"),
            ("POST", "/subscriptions/mail"),
            ("POST", "/subscriptions/teams"),
            ("DELETE", "/subscriptions/abc"),
        ):
            with self.subTest(path=path):
                response = self.client.request(method, path)
                self.assertEqual(response.status_code, 401)
                self.assertIn("error", response.json())
        self.assertEqual(self.fake.requests, [])

    def test_expired_session_is_rejected(self):
        self.app.state.sessions.create(
            "old",
            "user-token",
            datetime.now(timezone.utc) - timedelta(seconds=1),
            UserProfile(),
        )
        self.client.cookies.set(SESSION_COOKIE_NAME, "old")
        self.assertEqual(self.client.get("/subscriptions").status_code, 401)

    def test_create_list_and_delete(self):
        self.sign_in()
        created = self.client.post("/subscriptions/teams")
        self.assertEqual(created.status_code, 200)
        body = created.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"], "active")
        sub_id = body["details"]["id"]

        listed = self.client.get("/subscriptions").json()["value"]
        self.assertEqual([s["id"] for s in listed], [sub_id])
        self.assertEqual(listed[0]["resource"], "/me/chats/getAllMessages")

        deleted = self.client.delete(f"/subscriptions/{sub_id}")
        self.assertEqual(deleted.json(), {"success": True, "message": "Subscription deleted"})
        self.assertEqual(self.fake.subscriptions, {})

        again = self.client.delete(f"/subscriptions/{sub_id}")
        self.assertEqual(again.status_code, 200)

    def test_session_token_is_used_for_graph_calls(self):
        self.sign_in()
        self.client.get("/subscriptions")
        self.assertEqual(self.fake.requests[-1].headers["Authorization"], "Bearer user-token")

    def test_renew(self):
        self.sign_in()
        sub_id = self.fake.add_subscription("/me/chats/getAllMessages")
        response = self.client.post(f"/subscriptions/{sub_id}/renew")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["subscription"]["expirationDateTime"].endswith("Z"))

    def test_graph_failure_maps_to_500_with_details(self):
        self.sign_in()
        self.fake.fail_create = True
        response = self.client.post("/subscriptions/mail")
        self.assertEqual(response.status_code, 500)
        details = response.json()["details"]
        self.assertEqual(details["code"], "InvalidRequest")
        self.assertIn("validation", details["message"])


class TestMissingWebhookUrl(RelayAppTestCase):
    settings_overrides = {"webhook_url": ""}

    def test_config_error_maps_to_500(self):
        self.sign_in()
        response = self.client.post("/subscriptions/mail")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["details"]["setting"], "WEBHOOK_URL")
        self.assertEqual(self.fake.requests, [])


class TestEndToEnd(RelayAppTestCase):
    def test_mail_subscription_then_notification_reaches_browser(self):
        self.sign_in()
        self.fake.add_message(
            "users/u1/messages/AAMkAD1",
            {
                "id": "AAMkAD1",
                "subject": "Launch plan",
                "from": {"emailAddress": {"name": "Grace Hopper", "address": "grace@example.com"}},
                "toRecipients": [{"emailAddress": {"name": "Ada Lovelace", "address": "ada@example.com"}}],
                "receivedDateTime": "2026-03-01T09:00:00Z",
                "bodyPreview": "Draft attached",
                "body": {"contentType": "text", "content": "Draft attached."},
            },
        )

        created = self.client.post("/subscriptions/mail").json()
        self.assertTrue(created["success"])
        sub_id = created["details"]["id"]

        notification = {
            "subscriptionId": sub_id,
            "changeType": "created",
            "clientState": "shared-secret",
            "resource": "Users/u1/Messages/AAMkAD1",
            "resourceData": {"@odata.type": "#Microsoft.Graph.Message", "id": "AAMkAD1"},
        }
        response = self.client.post("/webhook", json={"value": [notification, notification]})
        self.assertEqual(response.status_code, 202)

        self.assertEqual(len(self.connection.events), 1)
        event = self.connection.events[0]
        self.assertEqual(event["type"], "email")
        self.assertEqual(event["subscriptionId"], sub_id)
        self.assertEqual(event["data"]["subject"], "Launch plan")
        self.assertEqual(event["data"]["from"], "Grace Hopper <grace@example.com>")
        self.assertEqual(event["data"]["to"], "Ada Lovelace <ada@example.com>")


class TestDebugRoutes(RelayAppTestCase):
    settings_overrides = {"debug_routes_enabled": True}

    def test_push_test_sends_email_then_teams_sample(self):
        response = self.client.post("/debug/push-test")
        self.assertEqual(response.json(), {"delivered": 1})
        self.assertEqual([e["type"] for e in self.connection.events], ["email", "teams"])


class TestDebugRoutesDisabled(RelayAppTestCase):
    def test_push_test_not_mounted(self):
        self.assertEqual(self.client.post("/debug/push-test").status_code, 404)


if __name__ == "__main__":
    unittest.main()
