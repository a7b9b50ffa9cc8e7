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

import dataclasses
import json
import logging
from typing import ClassVar, Optional, Union

import voluptuous.error
from voluptuous import Schema, Required, Any, All, Length, ALLOW_EXTRA

ROLE_MOBILE = "mobile"
ROLE_HARDWARE = "arduino"
HARDWARE_ROLE_ALIASES = (ROLE_HARDWARE, "hardware")

FIRST_MESSAGE_ERROR = "First message must be a 'hello' handshake."
INVALID_JSON_ERROR = "Invalid JSON."

_identifier = All(str, Length(min=1))

mobile_hello_schema = Schema({
    Required('type'): 'hello',
    Required('role'): ROLE_MOBILE,
    Required('matchId'): _identifier,
    Required('userId'): _identifier,
    Required('authToken'): _identifier,
}, extra=ALLOW_EXTRA)

hardware_hello_schema = Schema({
    Required('type'): 'hello',
    Required('role'): Any(*HARDWARE_ROLE_ALIASES),
    Required('planeId'): _identifier,
    Required('authToken'): _identifier,
}, extra=ALLOW_EXTRA)


class HandshakeError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


@dataclasses.dataclass(frozen=True)
class MobileHello:
    match_id: str
    user_id: str
    auth_token: str


@dataclasses.dataclass(frozen=True)
class HardwareHello:
    plane_id: str
    auth_token: str


Hello = Union[MobileHello, HardwareHello]


def parse_hello(raw) -> Hello:
    if not isinstance(raw, str):
        raise HandshakeError(FIRST_MESSAGE_ERROR)
    try:
        packet = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HandshakeError(INVALID_JSON_ERROR) from e
    if not isinstance(packet, dict):
        raise HandshakeError(FIRST_MESSAGE_ERROR)

    if "token" in packet:
        packet.setdefault("authToken", packet["token"])

    role = packet.get("role")
    try:
        if role == ROLE_MOBILE:
            packet = mobile_hello_schema(packet)
            return MobileHello(packet["matchId"], packet["userId"], packet["authToken"])
        if role in HARDWARE_ROLE_ALIASES:
            packet = hardware_hello_schema(packet)
            return HardwareHello(packet["planeId"], packet["authToken"])
    except voluptuous.error.Invalid as e:
        logging.debug(f"Malformed hello: {e}")
        raise HandshakeError(FIRST_MESSAGE_ERROR) from e

    raise HandshakeError(FIRST_MESSAGE_ERROR)


class OutgoingMessage:
    type: ClassVar[str]

    def data(self) -> dict:
        raise NotImplementedError

    def to_dict(self) -> dict:
        return {"type": self.type, "data": self.data()}

    def encode(self) -> str:
        return json.dumps(self.to_dict())


@dataclasses.dataclass(frozen=True)
class SystemAck(OutgoingMessage):
    type: ClassVar[str] = "system:ack"
    role: str
    user_id: Optional[str] = None
    plane_id: Optional[str] = None
    match_id: Optional[str] = None

    def data(self) -> dict:
        data = {"role": self.role}
        if self.user_id is not None:
            data["userId"] = self.user_id
        if self.plane_id is not None:
            data["planeId"] = self.plane_id
        if self.match_id is not None:
            data["matchId"] = self.match_id
        return data


@dataclasses.dataclass(frozen=True)
class SystemErrorMessage(OutgoingMessage):
    type: ClassVar[str] = "system:error"
    error: str

    def to_dict(self) -> dict:
        return {"type": self.type, "error": self.error}


@dataclasses.dataclass(frozen=True)
class MatchUpdate(OutgoingMessage):
    type: ClassVar[str] = "match:update"
    status: str
    time_remaining: Optional[float]
    scores: list

    def data(self) -> dict:
        return {"status": self.status, "timeRemaining": self.time_remaining, "scores": self.scores}


@dataclasses.dataclass(frozen=True)
class PlaneHit(OutgoingMessage):
    type: ClassVar[str] = "plane:hit"
    plane_id: str
    target_id: str
    timestamp: str

    def data(self) -> dict:
        return {"planeId": self.plane_id, "targetId": self.target_id, "timestamp": self.timestamp}


@dataclasses.dataclass(frozen=True)
class MatchEnd(OutgoingMessage):
    type: ClassVar[str] = "match:end"
    winners: list
    scores: list

    def data(self) -> dict:
        return {"winners": self.winners, "scores": self.scores}


@dataclasses.dataclass(frozen=True)
class MatchCreated(OutgoingMessage):
    type: ClassVar[str] = "match:created"
    match_id: str

    def data(self) -> dict:
        return {"matchId": self.match_id, "status": "waiting"}


@dataclasses.dataclass(frozen=True)
class MatchState(OutgoingMessage):
    type: ClassVar[str] = "match:state"
    status: str

    def data(self) -> dict:
        return {"status": self.status}


@dataclasses.dataclass(frozen=True)
class PlanePowerOn(OutgoingMessage):
    type: ClassVar[str] = "plane:poweron"
    plane_id: str
    user_id: Optional[str]

    def data(self) -> dict:
        return {"planeId": self.plane_id, "userId": self.user_id}


@dataclasses.dataclass(frozen=True)
class PlaneFlash(OutgoingMessage):
    type: ClassVar[str] = "plane:flash"
    plane_id: str
    by_plane_id: str
    timestamp: str

    def data(self) -> dict:
        return {"planeId": self.plane_id, "byPlaneId": self.by_plane_id, "timestamp": self.timestamp}


@dataclasses.dataclass(frozen=True)
class PlaneKicked(OutgoingMessage):
    type: ClassVar[str] = "plane:kicked"
    plane_id: str
    reason: str  # kick | disconnect | manual

    def data(self) -> dict:
        return {"planeId": self.plane_id, "reason": self.reason}


@dataclasses.dataclass(frozen=True)
class PlaneDisqualified(PlaneKicked):
    type: ClassVar[str] = "plane:disqualified"
