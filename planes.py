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

import datetime
import logging
from typing import Optional, Type

from server_data import (
    ServerData, Plane, JoinEvent, LeaveEvent, DisqualifyEvent, HitEvent, MatchEvent,
)


class PlaneRegistry:
    """
    Known planes survive across matches; only their per-match stats are reset.
    """

    def __init__(self, data: ServerData):
        self._data = data

    def next_icon(self) -> str:
        return "WHITE" if self._data.last_icon == "BLACK" else "BLACK"

    def register(self, plane_id: str, user_id: Optional[str] = None, address: Optional[str] = None) -> Plane:
        plane = self._data.planes.get(plane_id)
        if plane is None:
            plane = Plane(plane_id=plane_id, user_id=user_id, address=address, icon=self.next_icon())
            self._data.planes[plane_id] = plane
            logging.info(f"Plane {plane_id=} registered ({plane.icon})")
        else:
            if user_id is not None:
                plane.user_id = user_id
            if address is not None:
                plane.address = address
            plane.is_online = True
            logging.info(f"Plane {plane_id=} registered again")

        self._data.last_icon = plane.icon
        return plane

    def get(self, plane_id) -> Optional[Plane]:
        return self._data.planes.get(plane_id)

    def list_all(self) -> list[Plane]:
        return list(self._data.planes.values())

    def list_online(self) -> list[Plane]:
        return [plane for plane in self._data.planes.values() if plane.is_online]

    def list_joined(self) -> list[Plane]:
        if self._data.current_match is None:
            return []
        return [plane for plane in self._data.planes.values() if plane.is_joined]

    def mark_online(self, plane_id: str) -> None:
        plane = self.get(plane_id)
        if plane is None:
            logging.warning(f"mark_online: plane {plane_id=} not found")
            return
        plane.is_online = True

    def mark_offline(self, plane_id: str) -> None:
        plane = self.get(plane_id)
        if plane is None:
            logging.warning(f"mark_offline: plane {plane_id=} not found")
            return
        plane.is_online = False
        logging.info(f"Plane {plane_id=} went offline")

    def join(self, plane_id: str, player_name: str) -> bool:
        match = self._data.current_match
        if match is None:
            return False
        plane = self.get(plane_id)
        if plane is None:
            return False

        plane.player_name = player_name
        plane.is_joined = True
        if plane_id not in match.roster:
            match.roster.append(plane_id)
        match.append_event(JoinEvent(plane_id=plane_id, timestamp=match.next_timestamp()))
        return True

    def remove(self, plane_id: str, disqualify: bool = False) -> bool:
        """Take a plane out of the current match, appending a leave or disqualify event."""
        match = self._data.current_match
        if match is None:
            return False
        plane = self.get(plane_id)
        if plane is None:
            return False

        plane.is_joined = False
        event_type: Type[MatchEvent] = LeaveEvent
        if disqualify:
            plane.is_disqualified = True
            event_type = DisqualifyEvent
        if plane_id in match.roster:
            match.roster.remove(plane_id)
        match.append_event(event_type(plane_id=plane_id, timestamp=match.next_timestamp()))
        return True

    def record_hit(self, attacker_id: str, target_id: str, timestamp: Optional[datetime.datetime] = None) -> bool:
        match = self._data.current_match
        if match is None:
            return False
        attacker = self.get(attacker_id)
        if attacker is None:
            return False
        target = self.get(target_id)
        if target is None:
            return False

        match.append_event(HitEvent(
            plane_id=attacker_id,
            target_id=target_id,
            timestamp=match.next_timestamp(timestamp),
        ))
        attacker.hits += 1
        target.hits_taken += 1
        return True

    def reset_match_stats(self) -> None:
        for plane in self._data.planes.values():
            plane.reset_match_stats()
