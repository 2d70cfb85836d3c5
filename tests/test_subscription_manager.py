"""Tests for subscription create-or-replace, renew and delete against a fake Graph."""

import asyncio
import json
import sys
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx

# Allow importing src when running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.errors import ConfigError, ProviderError
from src.graph.client import GraphClient
from src.webhook.subscription import SubscriptionKind, SubscriptionManager
from tests.graph_fakes import GRAPH_BASE, FakeGraph, make_settings


class TestSubscriptionManager(unittest.TestCase):
    def setUp(self):
        self.fake = FakeGraph()
        self.settings = make_settings()
        self.graph = GraphClient(http_client=self.fake.client(), base_url=GRAPH_BASE)
        self.manager = SubscriptionManager(self.graph, self.settings)

    def test_descriptor_fields(self):
        now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
        desc = self.manager.build_descriptor(SubscriptionKind.MAIL, now=now).to_api()
        self.assertEqual(desc["changeType"], "created,updated")
        self.assertEqual(desc["notificationUrl"], "https://relay.example.com/webhook")
        self.assertEqual(desc["lifecycleNotificationUrl"], "https://relay.example.com/webhook")
        self.assertEqual(desc["resource"], "/me/mailFolders('Inbox')/messages")
        self.assertEqual(desc["clientState"], "shared-secret")
        self.assertEqual(desc["expirationDateTime"], "2026-03-01T10:00:00Z")

    def test_webhook_url_already_ending_in_webhook(self):
        manager = SubscriptionManager(self.graph, make_settings(webhook_url="https://relay.example.com/webhook/"))
        desc = manager.build_descriptor(SubscriptionKind.TEAMS)
        self.assertEqual(desc.notification_url, "https://relay.example.com/webhook")
        self.assertEqual(desc.resource, "/me/chats/getAllMessages")

    def test_client_state_truncated(self):
        manager = SubscriptionManager(self.graph, make_settings(subscription_secret="x" * 200))
        self.assertEqual(len(manager.build_descriptor(SubscriptionKind.MAIL).client_state), 128)

    def test_missing_webhook_url_raises_before_any_graph_call(self):
        manager = SubscriptionManager(self.graph, make_settings(webhook_url=""))
        with self.assertRaises(ConfigError) as ctx:
            asyncio.run(manager.create_or_replace("tok", SubscriptionKind.MAIL))
        self.assertEqual(ctx.exception.setting, "WEBHOOK_URL")
        self.assertEqual(self.fake.requests, [])

    def test_create_twice_keeps_one_mail_subscription_and_leaves_teams(self):
        teams_id = self.fake.add_subscription("/me/chats/getAllMessages")

        first = asyncio.run(self.manager.create_or_replace("tok", SubscriptionKind.MAIL))
        second = asyncio.run(self.manager.create_or_replace("tok", SubscriptionKind.MAIL))

        self.assertNotEqual(first.subscription.id, second.subscription.id)
        self.assertEqual(second.status, "active")
        remaining = self.fake.subscriptions
        self.assertIn(teams_id, remaining)
        self.assertIn(second.subscription.id, remaining)
        self.assertNotIn(first.subscription.id, remaining)
        self.assertEqual(len(remaining), 2)

        posts = self.fake.requests_to("POST", "/subscriptions")
        self.assertEqual(len(posts), 2)
        self.assertEqual(posts[0].headers["Authorization"], "Bearer tok")
        self.assertEqual(json.loads(posts[0].content)["resource"], "/me/mailFolders('Inbox')/messages")

    def test_existing_mail_subscription_on_other_path_is_replaced(self):
        old = self.fake.add_subscription("Users/u1/Messages")
        result = asyncio.run(self.manager.create_or_replace("tok", SubscriptionKind.MAIL))
        self.assertNotIn(old, self.fake.subscriptions)
        self.assertIn(result.subscription.id, self.fake.subscriptions)

    def test_create_teams_leaves_mail(self):
        mail_id = self.fake.add_subscription("/me/mailFolders('Inbox')/messages")
        asyncio.run(self.manager.create_or_replace("tok", SubscriptionKind.TEAMS))
        self.assertIn(mail_id, self.fake.subscriptions)

    def test_create_response_shape(self):
        result = asyncio.run(self.manager.create_or_replace("tok", SubscriptionKind.MAIL))
        body = result.to_response()
        self.assertTrue(body["success"])
        self.assertEqual(body["status"], "active")
        self.assertEqual(body["details"]["id"], result.subscription.id)
        self.assertEqual(body["details"]["resource"], "/me/mailFolders('Inbox')/messages")
        self.assertEqual(body["subscription"]["id"], result.subscription.id)

    def test_create_failure_surfaces_provider_error(self):
        self.fake.fail_create = True
        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(self.manager.create_or_replace("tok", SubscriptionKind.MAIL))
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.code, "InvalidRequest")

    def test_lost_create_response_does_not_create_twice(self):
        def drops_create_response(request: httpx.Request) -> httpx.Response:
            response = self.fake.handle(request)
            if request.method == "POST":
                raise httpx.ReadError("connection reset after create", request=request)
            return response

        graph = GraphClient(
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(drops_create_response)),
            base_url=GRAPH_BASE,
        )
        manager = SubscriptionManager(graph, self.settings)
        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(manager.create_or_replace("tok", SubscriptionKind.MAIL))
        self.assertEqual(ctx.exception.code, "network_error")
        self.assertEqual(len(self.fake.requests_to("POST", "/subscriptions")), 1)
        self.assertEqual(len(self.fake.subscriptions), 1)

    def test_delete_missing_subscription_succeeds(self):
        asyncio.run(self.manager.delete("tok", "does-not-exist"))
        self.assertEqual(len(self.fake.requests_to("DELETE", "/subscriptions/")), 1)

    def test_delete_existing(self):
        sub_id = self.fake.add_subscription("/me/chats/getAllMessages")
        asyncio.run(self.manager.delete("tok", sub_id))
        self.assertNotIn(sub_id, self.fake.subscriptions)

    def test_renew_extends_expiration(self):
        sub_id = self.fake.add_subscription("/me/chats/getAllMessages")
        before = datetime.now(timezone.utc)
        sub = asyncio.run(self.manager.renew("tok", sub_id))
        expires = datetime.fromisoformat(sub.expiration_date_time.replace("Z", "+00:00"))
        self.assertGreaterEqual(expires, before + timedelta(minutes=59))
        self.assertLessEqual(expires, before + timedelta(minutes=61))

    def test_renew_unknown_subscription_raises(self):
        with self.assertRaises(ProviderError) as ctx:
            asyncio.run(self.manager.renew("tok", "missing"))
        self.assertTrue(ctx.exception.is_not_found)


if __name__ == "__main__":
    unittest.main()
