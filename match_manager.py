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
import logging
from secrets import compare_digest
from typing import Optional

import voluptuous.error
from voluptuous import Schema, Required, Optional as VOptional, Any, All, Length, Coerce, ALLOW_EXTRA

from disconnect_supervisor import DisconnectSupervisor
from errors import ValidationError, AuthError, StateConflict, NotFound, InternalInconsistency
from match_session import MatchSession
from planes import PlaneRegistry
from server_data import ServerData, Match, MatchStatus
from timers import TaskScheduler
from tokens import TokenStore
from utils import build_join_link, get_local_ip_address, isoformat, utcnow

"""
Every action here runs start to finish without awaiting, so two requests can
never interleave between a check and the write that depends on it. Push
messages are queued on the websocket server afterwards.
"""


def whole_number(value):
    if isinstance(value, bool):
        raise voluptuous.error.Invalid("expected a number")
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if not isinstance(value, int):
        raise voluptuous.error.Invalid("expected a number")
    return value


text = All(str, Length(min=1))

register_schema = Schema({
    Required('planeId'): text,
    VOptional('userId'): Any(None, str),
    VOptional('esp32Ip'): Any(None, str),
}, extra=ALLOW_EXTRA)

join_schema = Schema({
    Required('gamePin'): All(Any(str, int), Coerce(str)),
    Required('planeId'): text,
    Required('userId'): text,
    Required('playerName'): text,
}, extra=ALLOW_EXTRA)

hit_schema = Schema({
    Required('authToken'): text,
    Required('planeId'): text,
    Required('targetId'): text,
}, extra=ALLOW_EXTRA)

new_match_schema = Schema({
    VOptional('duration'): whole_number,
    VOptional('maxPlayers'): whole_number,
}, extra=ALLOW_EXTRA)

kick_schema = Schema({
    Required('planeId'): text,
}, extra=ALLOW_EXTRA)


def validate(schema: Schema, payload, message: str) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON")
    try:
        return schema(payload)
    except voluptuous.error.MultipleInvalid as e:
        logging.debug(f"Rejected payload: {e}")
        raise ValidationError(message) from e


class MatchManager:
    _websocket_server: object = None

    def __init__(self, config, secrets, loop: asyncio.AbstractEventLoop, data: ServerData):
        self._config = config
        self._secrets = secrets
        self._loop = loop
        self._data = data

        self.scheduler = TaskScheduler(loop)
        self.tokens = TokenStore(data)
        self.registry = PlaneRegistry(data)
        self.session = MatchSession(data, self.tokens, self.registry, self.scheduler)
        self.session.on_expired = self._match_expired
        self.supervisor = DisconnectSupervisor(
            data, self.registry, self.scheduler,
            grace=float(config["match"]["disconnect_grace"]),
            policy=config["match"]["disconnect_policy"],
        )
        self.supervisor.on_removed = self._plane_removed_after_grace

    def set_websocket_server(self, websocket_server):
        self._websocket_server = websocket_server

    # ---- privileged host actions ----

    def _authorize(self, payload):
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON")
        supplied = payload.get("serverToken")
        expected = self._secrets["server"]["server_token"]
        if not isinstance(supplied, str) or not compare_digest(supplied.encode(), expected.encode()):
            raise AuthError("Unauthorized", status=403)

    def create_match(self, payload) -> dict:
        self._authorize(payload)
        request = validate(new_match_schema, payload, "duration and maxPlayers must be numbers")
        duration = request.get("duration", self._config["match"]["default_duration"])
        max_players = request.get("maxPlayers", self._config["match"]["default_max_players"])

        host, local_ip = self._advertised_host()
        http_port = int(self._config["server"]["http_port"])
        ws_port = self._websocket_port()
        match = self.session.create(
            duration, max_players,
            server_url=f"http://{host}:{http_port}",
            ws_url=f"ws://{host}:{ws_port}",
            local_ip=local_ip,
        )

        if self._websocket_server is not None:
            self._websocket_server.broadcast_match_created(match.match_id)
            self._websocket_server.broadcast_match_state(match.status.value)

        return {
            "success": True,
            "match": {
                "matchId": match.match_id,
                "gamePin": match.game_pin,
                "qrCodeData": build_join_link(host, http_port, match.game_pin),
                "status": match.status.value,
                "matchType": match.match_type,
                "duration": match.duration,
                "maxPlayers": match.max_players,
                "serverUrl": match.server_url,
                "wsUrl": match.ws_url,
                "matchPlanes": list(match.roster),
                "localIp": match.local_ip,
            }
        }

    def start_match(self, payload) -> dict:
        self._authorize(payload)
        ends_at = self.session.start()
        self._push_match_update()
        if self._websocket_server is not None:
            self._websocket_server.broadcast_match_state(MatchStatus.ACTIVE.value)
        return {"success": True, "endsAt": isoformat(ends_at)}

    def end_match(self, payload) -> dict:
        self._authorize(payload)
        results = self.session.end()
        match = self._data.current_match
        self._push_match_end(results)
        return {"success": True, "match": match.to_dict(), "results": results}

    def kick(self, payload) -> dict:
        self._authorize(payload)
        request = validate(kick_schema, payload, "Missing required field: planeId")
        plane_id = request["planeId"]

        disqualified = self.session.kick(plane_id)
        plane = self.registry.get(plane_id)
        if self._websocket_server is not None:
            self._websocket_server.notify_plane_removed(plane_id, plane.user_id, disqualified, "kick")
        self._push_match_update()
        return {"success": True, "disqualified": disqualified}

    # ---- plane and phone actions ----

    def register(self, payload, remote_address: Optional[str] = None) -> dict:
        request = validate(register_schema, payload, "Missing required field: planeId is required.")
        plane = self.registry.register(
            request["planeId"],
            request.get("userId"),
            request.get("esp32Ip") or remote_address,
        )
        token = self.tokens.issue_device_token(plane.plane_id)

        if self._websocket_server is not None:
            self._websocket_server.broadcast_plane_power_on(plane.plane_id, plane.user_id)

        match = self._data.current_match
        return {
            "success": True,
            "authToken": token,
            "matchId": match.match_id if match else None,
            "icon": plane.icon,
        }

    def join(self, payload) -> dict:
        request = validate(
            join_schema, payload,
            "Missing required fields: gamePin, planeId, userId, and playerName are required.",
        )
        plane_id, user_id = request["planeId"], request["userId"]

        match = self._data.current_match
        if match is None or match.game_pin != request["gamePin"]:
            raise NotFound("Invalid Game PIN or no match active.")
        plane = self.registry.get(plane_id)
        if plane is None:
            raise NotFound("Plane not registered. Please ensure the plane is turned on and connected to WiFi first.")
        if plane.user_id != user_id:
            raise AuthError("User ID does not belong to this plane.", status=403)
        if not plane.is_online:
            raise StateConflict("Plane is offline. Please ensure the plane is turned on and connected to WiFi first.")
        if plane.is_disqualified:
            raise StateConflict("Plane has been disqualified from this match.")
        if match.status is not MatchStatus.WAITING:
            raise StateConflict("Match is already in progress or ended.")
        if plane_id not in match.roster and len(self.registry.list_joined()) >= match.max_players:
            raise StateConflict("Match is full.")

        if not self.registry.join(plane_id, request["playerName"]):
            logging.error(f"Plane {plane_id=} passed every join check but could not be joined")
            raise InternalInconsistency("Failed to join plane to match.")
        token = self.tokens.issue_user_token(match.match_id, user_id)
        logging.info(f"Plane {plane_id=} joined match {match.match_id} as {request['playerName']!r}")

        self._push_match_update()
        return {"success": True, "authToken": token, "matchId": match.match_id}

    def hit(self, payload) -> dict:
        request = validate(
            hit_schema, payload,
            "Missing required fields. authToken, planeId and targetId are required.",
        )
        plane_id, target_id = request["planeId"], request["targetId"]

        match = self._data.current_match
        if match is None:
            raise NotFound("No match active.")
        if not self.tokens.validate_device(plane_id, request["authToken"]):
            raise AuthError("Invalid auth token for this plane.")
        if plane_id == target_id:
            raise ValidationError("A plane cannot hit itself.")
        if match.status is not MatchStatus.ACTIVE:
            raise StateConflict("Hits only count while the match is active.")
        target = self.registry.get(target_id)
        if target is None or not target.is_joined:
            raise NotFound("Target plane is not in this match.")
        attacker = self.registry.get(plane_id)
        if attacker is None or not attacker.is_joined:
            raise NotFound("Attacking plane is not in this match.")

        if not self.registry.record_hit(plane_id, target_id, utcnow()):
            logging.error(f"Hit {plane_id=} -> {target_id=} passed validation but was not recorded")
            raise InternalInconsistency("Failed to record hit.")
        event = match.events[-1]
        logging.info(f"Plane {attacker.player_name} hit plane {target.player_name}")

        if self._websocket_server is not None:
            self._websocket_server.broadcast_plane_hit(plane_id, target_id, event.timestamp)
            self._websocket_server.send_flash_command(target_id, target.user_id, plane_id, event.timestamp)
        self._push_match_update()
        return {"success": True}

    # ---- poll-friendly snapshots ----

    def current_match(self) -> dict:
        snapshot = self.session.snapshot()
        if snapshot is None:
            raise NotFound("No match active.")
        return snapshot

    def planes(self) -> dict:
        return {"onlinePlanes": [plane.to_dict() for plane in self.registry.list_online()]}

    def status(self) -> dict:
        connections = {"mobiles": [], "arduinos": []}
        if self._websocket_server is not None:
            connections = self._websocket_server.connected_summary()
        return {
            "planes": [plane.to_dict() for plane in self.registry.list_all()],
            "connections": connections,
        }

    # ---- hardware link changes, called by the websocket server ----

    def plane_link_lost(self, plane_id: str):
        if self.supervisor.link_lost(plane_id):
            self._push_match_update()

    def plane_link_restored(self, plane_id: str):
        self.supervisor.link_restored(plane_id)

    def _plane_removed_after_grace(self, plane_id: str, disqualified: bool):
        plane = self.registry.get(plane_id)
        if self._websocket_server is not None:
            self._websocket_server.notify_plane_removed(plane_id, plane.user_id, disqualified, "disconnect")
        self._push_match_update()

    def _match_expired(self, match: Match, results: dict):
        logging.info(f"Match {match.match_id} reached its end time")
        self._push_match_end(results)

    def shutdown(self):
        """Drop every timer, the current match and all tokens; nothing outlives the process."""
        self.scheduler.cancel_all()
        self.session.clear()
        self.tokens.rotate_session()

    # ---- helpers ----

    def _push_match_update(self):
        match = self._data.current_match
        if self._websocket_server is None or match is None:
            return
        self._websocket_server.broadcast_match_update(
            match.status.value,
            match.time_remaining(),
            [plane.score() for plane in self.registry.list_joined()],
        )

    def _push_match_end(self, results: dict):
        if self._websocket_server is None:
            return
        self._websocket_server.broadcast_match_end(results)
        self._websocket_server.broadcast_match_state(MatchStatus.ENDED.value)

    def _websocket_port(self) -> int:
        port = getattr(self._websocket_server, "port", None)
        if port:
            return port
        return int(self._config["server"]["websocket_port"])

    def _advertised_host(self) -> tuple[str, Optional[str]]:
        local_ip = get_local_ip_address()
        host = self._config["server"]["advertise_host"]
        if not host and self._config["mdns"]["enabled"]:
            host = f"{self._config['server']['name']}.local"
        if not host:
            host = local_ip
        if not host:
            logging.error("No address to advertise for the new match")
            raise InternalInconsistency("Could not detect local IP address. Ensure you're connected to WiFi.")
        return host, local_ip
