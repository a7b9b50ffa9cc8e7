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

import logging
from typing import Callable, Optional

from planes import PlaneRegistry
from server_data import ServerData, MatchStatus
from timers import TaskScheduler

POLICY_IMMEDIATE = "immediate"
POLICY_DEFERRED = "deferred"
POLICIES = (POLICY_IMMEDIATE, POLICY_DEFERRED)


def grace_timer_key(plane_id: str) -> str:
    return f"grace:{plane_id}"


class DisconnectSupervisor:
    """
    Turns a dropped hardware link into match consequences.

    immediate: the plane leaves the roster as soon as the link drops; the grace
        timer only decides about disqualification, which cannot happen because
        the plane is no longer joined by then.
    deferred: the plane keeps its roster slot for the grace period. If it has
        not reconnected when the timer fires it is disqualified (active match)
        or leaves (waiting match).

    Reconnecting never joins a plane back into a match.
    """

    def __init__(self, data: ServerData, registry: PlaneRegistry, scheduler: TaskScheduler,
                 grace: float = 20.0, policy: str = POLICY_IMMEDIATE):
        if policy not in POLICIES:
            raise ValueError(f"Unknown disconnect policy {policy!r}")
        self._data = data
        self._registry = registry
        self._scheduler = scheduler
        self.grace = grace
        self.policy = policy
        # (plane_id, disqualified) after the grace timer removed a plane
        self.on_removed: Optional[Callable[[str, bool], None]] = None

    def link_lost(self, plane_id: str) -> bool:
        """Returns True when the plane was taken off the roster right away."""
        self._registry.mark_offline(plane_id)

        removed = False
        match = self._data.current_match
        if self.policy == POLICY_IMMEDIATE and match is not None and plane_id in match.roster:
            removed = self._registry.remove(plane_id)
            logging.info(f"Plane {plane_id=} left match {match.match_id} (link lost)")

        self._scheduler.schedule(grace_timer_key(plane_id), self.grace, lambda: self._grace_expired(plane_id))
        return removed

    def link_restored(self, plane_id: str) -> None:
        if self._scheduler.cancel(grace_timer_key(plane_id)):
            logging.info(f"Plane {plane_id=} reconnected within the grace period")
        self._registry.mark_online(plane_id)

    def pending(self, plane_id: str) -> bool:
        return self._scheduler.pending(grace_timer_key(plane_id))

    def _grace_expired(self, plane_id: str) -> None:
        match = self._data.current_match
        plane = self._registry.get(plane_id)
        if match is None or plane is None or plane.is_online:
            return
        if not plane.is_joined or plane.is_disqualified:
            logging.debug(f"Grace period for {plane_id=} expired, nothing to do")
            return

        if match.status is MatchStatus.ACTIVE:
            logging.info(f"Auto-disqualifying plane {plane_id=} after disconnect grace period")
            self._registry.remove(plane_id, disqualify=True)
            disqualified = True
        elif match.status is MatchStatus.WAITING:
            logging.info(f"Plane {plane_id=} left match {match.match_id} after disconnect grace period")
            self._registry.remove(plane_id)
            disqualified = False
        else:
            return

        if self.on_removed is not None:
            self.on_removed(plane_id, disqualified)
