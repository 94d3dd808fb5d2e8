import asyncio
import json
import unittest

import httpx

from dtbridge.contracts.v1 import ActionCard
from dtbridge.kernel.context import RuntimeContext
from dtbridge.kernel.errors import ConfigError
from dtbridge.kernel.token_cache import TOKEN_URL
from dtbridge.ports.dingtalk.channel import DingTalkChannel
from dtbridge.ports.dingtalk.inbound import Dispatcher
from dtbridge.ports.dingtalk.sender import GROUP_SEND_URL, PRIVATE_SEND_URL


class NullDispatcher(Dispatcher):
    async def dispatch(self, context, config, deliver):
        return None


class IdleClient:
    def __init__(self, credential, connection):
        self.connection = connection

    def register_callback_handler(self, topic, handler):
        pass

    async def start(self):
        await asyncio.Event().wait()


def make_config(**default_overrides):
    default = {"client_id": "key", "client_secret": "secret", "robot_code": "robot-1"}
    default.update(default_overrides)
    return {
        "channels": {
            "dingtalk": {
                "accounts": {
                    "default": default,
                    "off": {"enabled": "false", "clientId": "k2", "clientSecret": "s2"},
                    "half": {"client_id": "k3"},
                }
            }
        }
    }


class ChannelTestCase(unittest.IsolatedAsyncioTestCase):
    send_status = 200
    token_response = None

    def make_channel(self, config):
        self.requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            if str(request.url) == TOKEN_URL:
                if self.token_response is not None:
                    return self.token_response
                return httpx.Response(200, json={"accessToken": "tok", "expireIn": 7200})
            if self.send_status != 200:
                return httpx.Response(self.send_status, text="bad request")
            return httpx.Response(200, json={"processQueryKey": "q"})

        runtime = RuntimeContext.create(transport=httpx.MockTransport(handler))
        channel = DingTalkChannel(config, NullDispatcher(), runtime=runtime, client_factory=IdleClient)
        self.addAsyncCleanup(channel.aclose)
        return channel

    def sends(self):
        return [r for r in self.requests if str(r.url) != TOKEN_URL]


class TestSendText(ChannelTestCase):
    async def test_group_conversation_uses_group_send(self) -> None:
        channel = self.make_channel(make_config())
        result = await channel.send_text(
            "Hello world",
            incoming={"raw": {"conversationType": "2", "conversationId": "cid-9", "senderStaffId": "u1"}},
        )
        self.assertTrue(result.ok)
        self.assertIsNone(result.error)
        (req,) = self.sends()
        self.assertEqual(str(req.url), GROUP_SEND_URL)
        self.assertEqual(req.headers["x-acs-dingtalk-access-token"], "tok")
        self.assertEqual(json.loads(req.content)["openConversationId"], "cid-9")

    async def test_direct_conversation_uses_private_send(self) -> None:
        channel = self.make_channel(make_config())
        result = await channel.send_text(
            "hi",
            account_id="default",
            incoming={"raw": {"conversationType": "1", "conversationId": "cid-9", "senderStaffId": "u1"}},
        )
        self.assertTrue(result.ok)
        (req,) = self.sends()
        self.assertEqual(str(req.url), PRIVATE_SEND_URL)
        body = json.loads(req.content)
        self.assertEqual(body["userIds"], ["u1"])
        self.assertEqual(body["robotCode"], "robot-1")

    async def test_direct_without_robot_code(self) -> None:
        channel = self.make_channel(make_config(robot_code=""))
        result = await channel.send_text("hi", incoming={"raw": {"conversationType": "1", "senderStaffId": "u1"}})
        self.assertFalse(result.ok)
        self.assertEqual(result.error, "Missing robotCode")
        self.assertEqual(self.requests, [])

    async def test_missing_account(self) -> None:
        channel = self.make_channel(make_config())
        result = await channel.send_text("hi", account_id="nope", incoming={"raw": {"conversationType": "2"}})
        self.assertEqual((result.ok, result.error), (False, "Account config missing"))
        result = await channel.send_text("hi", account_id="half", incoming={"raw": {"conversationType": "2"}})
        self.assertEqual(result.error, "Account config missing")

    async def test_no_context(self) -> None:
        channel = self.make_channel(make_config())
        self.assertEqual((await channel.send_text("hi")).error, "No context")
        self.assertEqual((await channel.send_text("hi", incoming={})).error, "No context")

    async def test_token_reused_across_sends(self) -> None:
        channel = self.make_channel(make_config())
        incoming = {"raw": {"conversationType": "2", "conversationId": "cid"}}
        await channel.send_text("one", incoming=incoming)
        await channel.send_text("two", incoming=incoming)
        self.assertEqual(sum(str(r.url) == TOKEN_URL for r in self.requests), 1)
        self.assertEqual(len(self.sends()), 2)

    async def test_action_card(self) -> None:
        channel = self.make_channel(make_config())
        result = await channel.send_action_card(ActionCard(title="T", text="b"), open_conversation_id="cid")
        self.assertTrue(result.ok)
        self.assertEqual(json.loads(self.sends()[0].content)["msgKey"], "sampleActionCard")


class TestSendTextRejected(ChannelTestCase):
    send_status = 400

    async def test_delivery_error_becomes_result(self) -> None:
        channel = self.make_channel(make_config())
        result = await channel.send_text("hi", incoming={"raw": {"conversationType": "2", "conversationId": "c"}})
        self.assertFalse(result.ok)
        self.assertIn("400", result.error)
        self.assertIn("bad request", result.error)


class TestSendTextBadToken(ChannelTestCase):
    async def test_non_json_token_body_becomes_result(self) -> None:
        self.token_response = httpx.Response(200, text="<html>gateway</html>")
        channel = self.make_channel(make_config())
        result = await channel.send_text("hi", incoming={"raw": {"conversationType": "2", "conversationId": "c"}})
        self.assertFalse(result.ok)
        self.assertIn("get access token", result.error)
        self.assertEqual(self.sends(), [])

    async def test_token_without_access_token_becomes_result(self) -> None:
        self.token_response = httpx.Response(200, json={"expireIn": 7200})
        channel = self.make_channel(make_config())
        result = await channel.send_text("hi", incoming={"raw": {"conversationType": "2", "conversationId": "c"}})
        self.assertFalse(result.ok)
        self.assertEqual(self.sends(), [])


class TestAccountLifecycle(ChannelTestCase):
    async def test_start_without_secret_fails(self) -> None:
        channel = self.make_channel(make_config(client_secret=""))
        with self.assertLogs("dtbridge.channel", level="ERROR"):
            with self.assertRaises(ConfigError):
                await channel.start_account("default")
        status = channel.check_status("default")
        self.assertEqual((status.ok, status.message), (False, "Stopped"))

    async def test_start_stop_status(self) -> None:
        channel = self.make_channel(make_config())
        self.assertEqual(await channel.start_account("default"), {"ok": True})
        status = channel.check_status("default")
        self.assertEqual((status.ok, status.message), (True, "Running"))

        self.assertEqual(await channel.stop_account("default"), {"ok": True})
        self.assertEqual(channel.check_status("default").message, "Stopped")
        self.assertEqual(await channel.stop_account("default"), {"ok": True})

    async def test_account_listing(self) -> None:
        channel = self.make_channel(make_config())
        self.assertEqual(channel.list_account_ids(), ["default", "half"])
        self.assertEqual(
            channel.resolve_account("default"),
            {"account_id": "default", "enabled": True, "configured": True},
        )
        self.assertEqual(
            channel.resolve_account("off"),
            {"account_id": "off", "enabled": False, "configured": True},
        )
        self.assertEqual(channel.resolve_account("unknown"), {"account_id": "unknown"})
        self.assertEqual(channel.resolve_account()["account_id"], "default")

    async def test_meta(self) -> None:
        channel = self.make_channel(make_config())
        self.assertEqual(channel.id, "dingtalk")
        self.assertEqual(channel.capabilities["chat_types"], ["group", "dm"])
        self.assertFalse(channel.capabilities["supports_images"])


if __name__ == "__main__":
    unittest.main()
