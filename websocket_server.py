"""
AeroDuel Server
Copyright (C) 2025 The AeroDuel Authors

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""

import asyncio
import dataclasses
import datetime
import logging
from typing import Callable, Optional

import websockets.exceptions
from websockets.asyncio.server import serve, Server, ServerConnection
from websockets.protocol import State as WebsocketState

from messages import (
    FIRST_MESSAGE_ERROR, ROLE_MOBILE, ROLE_HARDWARE,
    HandshakeError, HardwareHello, MobileHello, parse_hello,
    OutgoingMessage, SystemAck, SystemErrorMessage, MatchUpdate, PlaneHit, MatchEnd, MatchCreated,
    MatchState, PlanePowerOn, PlaneFlash, PlaneKicked, PlaneDisqualified,
)
from server_data import ServerData
from utils import isoformat


@dataclasses.dataclass(eq=False)
class TrackedClient:
    websocket: ServerConnection
    role: str
    user_id: Optional[str] = None
    plane_id: Optional[str] = None
    match_id: Optional[str] = None


class WebsocketServer:
    """
    Push channel for phones (role "mobile") and planes (role "arduino").
    Every connection has to open with a hello frame; anything it sends after
    a successful handshake is ignored.
    """

    def __init__(self, config, loop: asyncio.AbstractEventLoop, data: ServerData, manager):
        self._config = config
        self._loop = loop
        self._data = data
        self._manager = manager
        self._hello_timeout = float(self._config["match"]["hello_timeout"])
        self._websocket_server: Optional[Server] = None
        self._pending_sends: set[asyncio.Task] = set()
        self._manager.set_websocket_server(self)

    @property
    def port(self) -> Optional[int]:
        if self._websocket_server is None:
            return None
        return self._websocket_server.sockets[0].getsockname()[1]

    async def handler(self, websocket: ServerConnection):
        client = await self._handshake(websocket)
        if client is None:
            return
        try:
            async for _message in websocket:
                logging.debug(f"Ignoring frame from {client.role} after handshake")
        except websockets.exceptions.ConnectionClosed:
            logging.debug(f"Websocket connection closed")
        finally:
            self._client_gone(client)

    async def _handshake(self, websocket: ServerConnection) -> Optional[TrackedClient]:
        try:
            raw = await asyncio.wait_for(websocket.recv(), timeout=self._hello_timeout)
        except asyncio.TimeoutError:
            logging.debug("No hello received in time")
            await self._reject(websocket, FIRST_MESSAGE_ERROR)
            return None
        except websockets.exceptions.ConnectionClosed:
            logging.debug("Websocket closed before hello")
            return None

        try:
            hello = parse_hello(raw)
        except HandshakeError as e:
            await self._reject(websocket, e.message)
            return None

        if isinstance(hello, MobileHello):
            if not self._manager.tokens.validate_user(hello.match_id, hello.user_id, hello.auth_token):
                await self._reject(websocket, "Invalid auth token for this user/match.")
                return None
            client = TrackedClient(websocket, ROLE_MOBILE, user_id=hello.user_id, match_id=hello.match_id)
            self._data.connected_clients.add(client)
            logging.info(f"Mobile client {hello.user_id} connected for match {hello.match_id}")
            await self._deliver(websocket, SystemAck(ROLE_MOBILE, user_id=hello.user_id, match_id=hello.match_id))
            return client

        if isinstance(hello, HardwareHello):
            if not self._manager.tokens.validate_device(hello.plane_id, hello.auth_token):
                await self._reject(websocket, "Invalid auth token for this plane.")
                return None
            client = TrackedClient(websocket, ROLE_HARDWARE, plane_id=hello.plane_id)
            self._data.connected_clients.add(client)
            self._manager.plane_link_restored(hello.plane_id)
            logging.info(f"Plane {hello.plane_id} connected")
            await self._deliver(websocket, SystemAck(ROLE_HARDWARE, plane_id=hello.plane_id))
            match = self._data.current_match
            if match is not None:
                await self._deliver(websocket, MatchState(match.status.value))
            return client

        raise TypeError(f"Unhandled hello {hello!r}")

    async def _reject(self, websocket: ServerConnection, error: str):
        await self._deliver(websocket, SystemErrorMessage(error))
        await websocket.close()

    def _client_gone(self, client: TrackedClient):
        self._data.connected_clients.discard(client)
        if client.role != ROLE_HARDWARE:
            logging.debug(f"Mobile client {client.user_id} disconnected")
            return
        if any(other.role == ROLE_HARDWARE and other.plane_id == client.plane_id
               for other in self._data.connected_clients):
            logging.debug(f"Plane {client.plane_id} dropped an old connection, newer one still open")
            return
        self._manager.plane_link_lost(client.plane_id)

    async def _deliver(self, websocket: ServerConnection, message: OutgoingMessage):
        try:
            await websocket.send(message.encode())
        except websockets.exceptions.ConnectionClosed:
            logging.debug(f"Dropped {message.type}, peer already closed")

    def _post(self, websocket: ServerConnection, message: OutgoingMessage):
        if websocket.state is not WebsocketState.OPEN:
            return
        task = self._loop.create_task(self._deliver(websocket, message))
        self._pending_sends.add(task)
        task.add_done_callback(self._pending_sends.discard)

    async def flush(self):
        """Wait for every queued push to be written (or dropped)."""
        while self._pending_sends:
            await asyncio.wait(list(self._pending_sends))

    def broadcast(self, predicate: Callable[[TrackedClient], bool], message: OutgoingMessage) -> int:
        sent = 0
        for client in list(self._data.connected_clients):
            if predicate(client):
                self._post(client.websocket, message)
                sent += 1
        return sent

    def _to_match_mobiles(self, message: OutgoingMessage) -> int:
        match = self._data.current_match
        if match is None:
            return 0
        return self.broadcast(lambda c: c.role == ROLE_MOBILE and c.match_id == match.match_id, message)

    def send_to_plane(self, plane_id: str, message: OutgoingMessage) -> int:
        return self.broadcast(lambda c: c.role == ROLE_HARDWARE and c.plane_id == plane_id, message)

    def broadcast_match_update(self, status: str, time_remaining: Optional[float], scores: list):
        self._to_match_mobiles(MatchUpdate(status, time_remaining, scores))

    def broadcast_plane_hit(self, plane_id: str, target_id: str, timestamp: datetime.datetime):
        self._to_match_mobiles(PlaneHit(plane_id, target_id, isoformat(timestamp)))

    def broadcast_match_end(self, results: dict):
        self._to_match_mobiles(MatchEnd(results["winners"], results["scores"]))

    def broadcast_match_created(self, match_id: str):
        # every phone, so players of an ended match or kicked ones learn about it
        self.broadcast(lambda c: c.role == ROLE_MOBILE, MatchCreated(match_id))

    def broadcast_plane_power_on(self, plane_id: str, user_id: Optional[str]):
        self._to_match_mobiles(PlanePowerOn(plane_id, user_id))

    def broadcast_match_state(self, status: str):
        self.broadcast(lambda c: c.role == ROLE_HARDWARE, MatchState(status))

    def send_to_plane_and_owner(self, plane_id: str, user_id: Optional[str], message: OutgoingMessage):
        """Unicast to the plane itself and to the one phone of the user who owns it."""
        self.send_to_plane(plane_id, message)

        match = self._data.current_match
        if match is None or user_id is None:
            return
        self.broadcast(
            lambda c: c.role == ROLE_MOBILE and c.match_id == match.match_id and c.user_id == user_id,
            message,
        )

    def send_flash_command(self, target_id: str, owner_id: Optional[str], by_plane_id: str,
                           timestamp: datetime.datetime):
        self.send_to_plane_and_owner(target_id, owner_id, PlaneFlash(target_id, by_plane_id, isoformat(timestamp)))

    def notify_plane_removed(self, plane_id: str, user_id: Optional[str], disqualified: bool, reason: str):
        message_type = PlaneDisqualified if disqualified else PlaneKicked
        self.send_to_plane_and_owner(plane_id, user_id, message_type(plane_id, reason))

    def connected_summary(self) -> dict:
        mobiles, planes = [], []
        for client in self._data.connected_clients:
            if client.role == ROLE_MOBILE:
                mobiles.append({"userId": client.user_id, "matchId": client.match_id})
            else:
                planes.append({"planeId": client.plane_id})
        return {"mobiles": mobiles, "arduinos": planes}

    async def __aenter__(self):
        logging.debug(f"Starting websocket server")
        self._websocket_server = await serve(
            self.handler,
            self._config["server"]["bind"] or None,
            int(self._config["server"]["websocket_port"]),
        )
        logging.info(f"Websocket server listening on port {self.port}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._websocket_server is not None:
            logging.debug(f"Stopping websocket server")
            self._websocket_server.close()
            await self._websocket_server.wait_closed()
            self._websocket_server = None
        await self.flush()
