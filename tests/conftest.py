import asyncio
import json

import pytest
from websockets.protocol import State

from match_manager import MatchManager
from messages import ROLE_MOBILE, ROLE_HARDWARE
from server_data import ServerData
from websocket_server import WebsocketServer, TrackedClient

SERVER_TOKEN = "test-server-token-0123456789abcdefghij"


def make_config(**match) -> dict:
    config = {
        "server": {
            "name": "aeroduel-test",
            "http_port": 0,
            "websocket_port": 0,
            "bind": "127.0.0.1",
            "advertise_host": "127.0.0.1",
        },
        "match": {
            "default_duration": 420,
            "default_max_players": 2,
            "disconnect_grace": 20,
            "hello_timeout": 5,
            "disconnect_policy": "immediate",
        },
        "mdns": {
            "enabled": False,
        },
    }
    config["match"].update(match)
    return config


class FakeConnection:
    """Stands in for a websocket that already finished its handshake."""

    def __init__(self):
        self.state = State.OPEN
        self.sent = []

    async def send(self, message):
        self.sent.append(json.loads(message))

    async def close(self):
        self.state = State.CLOSED

    def types(self) -> list:
        return [message["type"] for message in self.sent]

    def of_type(self, message_type: str) -> list:
        return [message for message in self.sent if message["type"] == message_type]


class Lobby:
    """Drives a MatchManager the way the host app, phones and planes would."""

    def __init__(self, manager: MatchManager, data: ServerData, websocket_server: WebsocketServer):
        self.manager = manager
        self.data = data
        self.websocket_server = websocket_server
        self.device_tokens = {}
        self.user_tokens = {}

    def create(self, **payload) -> dict:
        return self.manager.create_match({"serverToken": SERVER_TOKEN, **payload})["match"]

    def start(self) -> dict:
        return self.manager.start_match({"serverToken": SERVER_TOKEN})

    def end(self) -> dict:
        return self.manager.end_match({"serverToken": SERVER_TOKEN})

    def kick(self, plane_id: str) -> dict:
        return self.manager.kick({"serverToken": SERVER_TOKEN, "planeId": plane_id})

    def register(self, plane_id: str, user_id: str) -> str:
        token = self.manager.register({"planeId": plane_id, "userId": user_id})["authToken"]
        self.device_tokens[plane_id] = token
        return token

    def join(self, plane_id: str, user_id: str, player_name: str = None) -> str:
        response = self.manager.join({
            "gamePin": self.data.current_match.game_pin,
            "planeId": plane_id,
            "userId": user_id,
            "playerName": player_name or f"pilot-{plane_id}",
        })
        self.user_tokens[user_id] = response["authToken"]
        return response["authToken"]

    def hit(self, plane_id: str, target_id: str) -> dict:
        return self.manager.hit({
            "authToken": self.device_tokens[plane_id],
            "planeId": plane_id,
            "targetId": target_id,
        })

    def ready_match(self, *plane_ids: str, max_players: int = 2) -> dict:
        """Register, create and join; plane `p` is owned by user `u-p`."""
        for plane_id in plane_ids:
            self.register(plane_id, f"u-{plane_id}")
        match = self.create(maxPlayers=max_players)
        for plane_id in plane_ids:
            self.join(plane_id, f"u-{plane_id}")
        return match

    def attach_mobile(self, user_id: str, match_id: str = None) -> FakeConnection:
        connection = FakeConnection()
        if match_id is None and self.data.current_match is not None:
            match_id = self.data.current_match.match_id
        self.data.connected_clients.add(TrackedClient(connection, ROLE_MOBILE, user_id=user_id, match_id=match_id))
        return connection

    def attach_plane(self, plane_id: str) -> FakeConnection:
        connection = FakeConnection()
        self.data.connected_clients.add(TrackedClient(connection, ROLE_HARDWARE, plane_id=plane_id))
        return connection

    async def flush(self):
        await self.websocket_server.flush()


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def secrets():
    return {"server": {"server_token": SERVER_TOKEN}}


@pytest.fixture
def data():
    return ServerData()


@pytest.fixture
async def manager(config, secrets, data):
    manager = MatchManager(config, secrets, asyncio.get_running_loop(), data)
    yield manager
    manager.shutdown()


@pytest.fixture
async def websocket_server(config, data, manager):
    return WebsocketServer(config, asyncio.get_running_loop(), data, manager)


@pytest.fixture
async def lobby(manager, data, websocket_server):
    return Lobby(manager, data, websocket_server)
