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
import enum
from typing import ClassVar, Optional

from utils import generate_match_id, isoformat, utcnow


class MatchStatus(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    ENDED = "ended"


@dataclasses.dataclass
class Plane:
    plane_id: str
    user_id: Optional[str]
    address: Optional[str] = None
    player_name: Optional[str] = None
    registered_at: datetime.datetime = dataclasses.field(default_factory=utcnow)
    icon: str = "BLACK"

    hits: int = 0
    hits_taken: int = 0

    is_online: bool = True
    is_joined: bool = False
    is_disqualified: bool = False

    def reset_match_stats(self):
        self.hits = 0
        self.hits_taken = 0
        self.is_disqualified = False
        self.is_joined = False

    def score(self) -> dict:
        return {
            "planeId": self.plane_id,
            "playerName": self.player_name,
            "hits": self.hits,
            "hitsTaken": self.hits_taken,
            "isDisqualified": self.is_disqualified,
        }

    def to_dict(self) -> dict:
        return {
            "planeId": self.plane_id,
            "userId": self.user_id,
            "esp32Ip": self.address,
            "playerName": self.player_name,
            "registeredAt": isoformat(self.registered_at),
            "icon": self.icon,
            "hits": self.hits,
            "hitsTaken": self.hits_taken,
            "isOnline": self.is_online,
            "isJoined": self.is_joined,
            "isDisqualified": self.is_disqualified,
        }


@dataclasses.dataclass(frozen=True)
class MatchEvent:
    type: ClassVar[str]
    plane_id: str
    timestamp: datetime.datetime

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "planeId": self.plane_id,
            "timestamp": isoformat(self.timestamp),
        }


@dataclasses.dataclass(frozen=True)
class JoinEvent(MatchEvent):
    type: ClassVar[str] = "join"


@dataclasses.dataclass(frozen=True)
class LeaveEvent(MatchEvent):
    type: ClassVar[str] = "leave"


@dataclasses.dataclass(frozen=True)
class DisqualifyEvent(MatchEvent):
    type: ClassVar[str] = "disqualify"


@dataclasses.dataclass(frozen=True)
class HitEvent(MatchEvent):
    type: ClassVar[str] = "hit"
    target_id: str = ""

    def to_dict(self) -> dict:
        event = super().to_dict()
        event["targetId"] = self.target_id
        return event


@dataclasses.dataclass
class Match:
    match_id: str
    game_pin: str
    duration: int
    max_players: int
    status: MatchStatus = MatchStatus.WAITING
    created_at: datetime.datetime = dataclasses.field(default_factory=utcnow)
    ends_at: Optional[datetime.datetime] = None
    ended_at: Optional[datetime.datetime] = None
    roster: list[str] = dataclasses.field(default_factory=list)
    events: list[MatchEvent] = dataclasses.field(default_factory=list)
    match_type: str = "timed"
    server_url: Optional[str] = None
    ws_url: Optional[str] = None
    local_ip: Optional[str] = None

    def next_timestamp(self, moment: Optional[datetime.datetime] = None) -> datetime.datetime:
        # the log never goes backwards, even if the wall clock does
        moment = moment or utcnow()
        if self.events and self.events[-1].timestamp > moment:
            return self.events[-1].timestamp
        return moment

    def append_event(self, event: MatchEvent) -> MatchEvent:
        self.events.append(event)
        return event

    def time_remaining(self) -> Optional[float]:
        if self.status is not MatchStatus.ACTIVE or self.ends_at is None:
            return None
        return max(0.0, (self.ends_at - utcnow()).total_seconds())

    def to_dict(self) -> dict:
        return {
            "matchId": self.match_id,
            "gamePin": self.game_pin,
            "status": self.status.value,
            "createdAt": isoformat(self.created_at),
            "endsAt": isoformat(self.ends_at),
            "endedAt": isoformat(self.ended_at),
            "matchType": self.match_type,
            "duration": self.duration,
            "maxPlayers": self.max_players,
            "matchPlanes": list(self.roster),
            "serverUrl": self.server_url,
            "wsUrl": self.ws_url,
            "localIp": self.local_ip,
            "events": [event.to_dict() for event in self.events],
        }


class ServerData:
    """
    Everything one running server knows. Components share this object
    instead of module globals.
    """

    def __init__(self):
        self.session_id: str = generate_match_id()
        self.current_match: Optional[Match] = None
        self.planes: dict[str, Plane] = dict()
        self.last_icon: Optional[str] = None

        # (session_id, plane_id) -> token, (match_id, user_id) -> token
        self.device_tokens: dict[tuple[str, str], str] = dict()
        self.user_tokens: dict[tuple[str, str], str] = dict()

        self.connected_clients: set = set()

        self.shutdown_event = asyncio.Event()
