import asyncio
import tempfile
import unittest
from pathlib import Path

from aiohttp import WSServerHandshakeError
from aiohttp.test_utils import TestClient, TestServer

from hatchat.config import Settings
from hatchat.storage import InMemoryDocumentStore
from hatchat.ws_transport import RUNTIME_KEY, create_app

from .ws_receive_util import assert_no_event, recv_event


class WsTransportTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.message_store = InMemoryDocumentStore([])
        self.color_store = InMemoryDocumentStore({})
        await self._start(
            create_app(
                Settings(ping_interval_s=3600),
                message_store=self.message_store,
                color_store=self.color_store,
            )
        )

    async def _start(self, app):
        self.app = app
        self.server = TestServer(self.app)
        await self.server.start_server()
        self.client = TestClient(self.server)
        await self.client.start_server()

    async def asyncTearDown(self):
        await self.client.close()
        await self.server.close()

    async def _connect(self, username: str, color: str | None = None):
        params = {"username": username}
        if color:
            params["color"] = color
        ws = await self.client.ws_connect("/ws", params=params)
        await recv_event(ws, "update_users", predicate=lambda data: username in [u["username"] for u in data["users"]])
        return ws

    async def test_health(self):
        resp = await self.client.get("/healthz")
        self.assertEqual(resp.status, 200)
        self.assertEqual(await resp.text(), "ok")

    async def test_missing_username_is_refused(self):
        resp = await self.client.get("/ws")
        self.assertEqual(resp.status, 400)
        self.assertEqual((await resp.json())["code"], "handshake_failed")

        with self.assertRaises(WSServerHandshakeError):
            await self.client.ws_connect("/ws", params={"username": "  "})
        self.assertEqual(len(self.app[RUNTIME_KEY].registry), 0)

    async def test_join_and_chat_fan_out(self):
        alice = await self._connect("alice", "#f00")
        bob = await self._connect("bob")

        await bob.send_json({"event": "user_join", "data": {"username": "bob"}})
        for ws in (alice, bob):
            join = await recv_event(ws, "user_join")
            self.assertEqual(join["username"], "bob")
            self.assertEqual(join["userColors"], {"alice": "#f00"})

        await alice.send_json({"event": "chat_message", "data": {"message": "hello"}})
        for ws in (alice, bob):
            chat = await recv_event(ws, "chat_message")
            self.assertEqual(chat["username"], "alice")
            self.assertEqual(chat["message"], "hello")
            self.assertEqual(chat["color"], "#f00")
            self.assertTrue(chat["timestamp"])

        stored = [record["message"] for record in self.message_store.document]
        self.assertEqual(stored, ["bob joined the chat", "hello"])

        await alice.close()
        await bob.close()

    async def test_history_goes_to_requester_only(self):
        alice = await self._connect("alice")
        bob = await self._connect("bob")
        for i in range(25):
            await alice.send_json({"event": "chat_message", "data": {"message": f"m{i}"}})
        await recv_event(bob, "chat_message", predicate=lambda data: data["message"] == "m24")

        await bob.send_json({"event": "load_messages", "data": {"page": 2}})
        history = await recv_event(bob, "chat_history")

        self.assertEqual(history["totalMessages"], 25)
        self.assertEqual([m["message"] for m in history["messages"]], ["m4", "m3", "m2", "m1", "m0"])
        await assert_no_event(alice, "chat_history", timeout=0.2)

        await alice.close()
        await bob.close()

    async def test_disconnect_broadcasts_leave(self):
        alice = await self._connect("alice")
        bob = await self._connect("bob")

        await bob.close()
        leave = await recv_event(alice, "user_leave")

        self.assertEqual(leave["username"], "bob")
        self.assertEqual([u["username"] for u in leave["users"]], ["alice"])
        self.assertEqual(self.message_store.document[-1]["message"], "bob left the chat")
        await alice.close()

    async def test_dnd_and_color_updates(self):
        phone = await self._connect("alice")
        laptop = await self._connect("alice")

        await phone.send_json({"event": "dnd_toggle", "data": {"dnd": True}})
        users = (await recv_event(laptop, "update_users", predicate=lambda d: any(u["dnd"] for u in d["users"])))["users"]
        self.assertEqual(sorted(u["dnd"] for u in users), [False, True])

        await phone.send_json({"event": "update_color", "data": {"color": "#00f"}})
        colors = await recv_event(laptop, "update_colors")
        self.assertEqual(colors["userColors"], {"alice": "#00f"})
        self.assertEqual(self.color_store.document, {"alice": "#00f"})

        await phone.close()
        await laptop.close()

    async def test_malformed_frames_get_errors(self):
        alice = await self._connect("alice")

        await alice.send_str("{not json")
        error = await recv_event(alice, "error")
        self.assertEqual(error["code"], "invalid_request")

        await alice.send_json({"event": "teleport", "data": {}})
        error = await recv_event(alice, "error")
        self.assertEqual(error["code"], "unknown_event")

        await alice.send_json({"event": "ping"})
        await recv_event(alice, "pong")
        await alice.close()


class WsPersistenceTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.settings = Settings(data_dir=Path(self._tmp.name), ping_interval_s=3600)

    async def asyncTearDown(self):
        self._tmp.cleanup()

    async def _serve(self):
        self.app = create_app(self.settings)
        server = TestServer(self.app)
        await server.start_server()
        client = TestClient(server)
        await client.start_server()
        return client

    async def _wait_for_empty_room(self):
        registry = self.app[RUNTIME_KEY].registry
        for _ in range(100):
            if len(registry) == 0:
                return
            await asyncio.sleep(0.01)
        self.fail("connection was never deregistered")

    async def test_history_and_colors_survive_restart(self):
        client = await self._serve()
        ws = await client.ws_connect("/ws", params={"username": "alice", "color": "#abc"})
        await ws.send_json({"event": "chat_message", "data": {"message": "persist me"}})
        await recv_event(ws, "chat_message")
        await ws.close()
        await self._wait_for_empty_room()
        await client.close()

        self.assertTrue(self.settings.messages_path.exists())
        self.assertTrue(self.settings.colors_path.exists())

        client = await self._serve()
        ws = await client.ws_connect("/ws", params={"username": "bob"})
        await ws.send_json({"event": "load_messages", "data": {"page": 1}})
        history = await recv_event(ws, "chat_history")
        await ws.close()
        await client.close()

        self.assertEqual(history["userColors"], {"alice": "#abc"})
        messages = [m["message"] for m in history["messages"]]
        self.assertIn("persist me", messages)
        self.assertEqual(messages[0], "alice left the chat")


if __name__ == "__main__":
    unittest.main()
