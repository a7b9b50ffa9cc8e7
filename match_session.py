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
from typing import Callable, Optional

from errors import ValidationError, StateConflict, NotFound
from planes import PlaneRegistry
from server_data import ServerData, Match, MatchStatus, Plane
from timers import TaskScheduler
from tokens import TokenStore
from utils import generate_game_pin, generate_match_id, utcnow

"""
Lifecycle of the one current match:

  (none | ended) --create--> waiting --start--> active --end/deadline--> ended

A new match supersedes the old one rather than deleting it from memory first;
creating it wipes per-match plane stats and every user token.
"""

MIN_DURATION, MAX_DURATION = 30, 1800
MIN_PLAYERS, MAX_PLAYERS = 2, 16

DEADLINE_TIMER = "match:deadline"


def score_planes(planes: list[Plane]) -> dict:
    """
    Rank by hits (most first) then hits taken (fewest first). Every plane that
    ties the leader on both counts is a winner.
    """
    scores = [plane.score() for plane in planes]
    scores.sort(key=lambda score: (-score["hits"], score["hitsTaken"]))

    winners = []
    if scores:
        top = (scores[0]["hits"], scores[0]["hitsTaken"])
        for score in scores:
            score["isWinner"] = (score["hits"], score["hitsTaken"]) == top
            if score["isWinner"]:
                winners.append(score["planeId"])

    return {
        "winners": winners,
        "scores": scores,
    }


class MatchSession:

    def __init__(self, data: ServerData, tokens: TokenStore, registry: PlaneRegistry, scheduler: TaskScheduler):
        self._data = data
        self._tokens = tokens
        self._registry = registry
        self._scheduler = scheduler
        self.on_expired: Optional[Callable[[Match, dict], None]] = None

    @property
    def current(self) -> Optional[Match]:
        return self._data.current_match

    def _replace(self, match: Optional[Match]) -> None:
        previous = self._data.current_match
        self._data.current_match = match

        previous_id = previous.match_id if previous else None
        match_id = match.match_id if match else None
        if previous_id != match_id:
            self._tokens.purge_user_tokens()

    def create(self, duration: int, max_players: int, server_url: Optional[str] = None,
               ws_url: Optional[str] = None, local_ip: Optional[str] = None) -> Match:
        current = self._data.current_match
        if current is not None and current.status is not MatchStatus.ENDED:
            raise StateConflict("A match is already in progress", extra={
                "existingMatch": {
                    "matchId": current.match_id,
                    "gamePin": current.game_pin,
                    "status": current.status.value,
                }
            })
        if not MIN_DURATION <= duration <= MAX_DURATION:
            raise ValidationError(
                f"Duration must be a valid number between {MIN_DURATION} seconds and 30 minutes ({MAX_DURATION} seconds)")
        if not MIN_PLAYERS <= max_players <= MAX_PLAYERS:
            raise ValidationError(f"maxPlayers must be a valid number between {MIN_PLAYERS} and {MAX_PLAYERS}")

        self._scheduler.cancel(DEADLINE_TIMER)
        match = Match(
            match_id=generate_match_id(),
            game_pin=generate_game_pin(),
            duration=duration,
            max_players=max_players,
            server_url=server_url,
            ws_url=ws_url,
            local_ip=local_ip,
        )
        self._registry.reset_match_stats()
        self._replace(match)
        logging.info(f"Match {match.match_id} created (pin {match.game_pin}, {duration}s, {max_players} players)")
        return match

    def start(self) -> datetime.datetime:
        match = self._require_match()
        if match.status is not MatchStatus.WAITING:
            if match.status is MatchStatus.ACTIVE:
                raise StateConflict("The match is already in progress.")
            raise StateConflict(
                "The current match has already ended. Please create a new match and allow players to join first.")
        if len(self._registry.list_joined()) < 2:
            raise StateConflict("There must be at least 2 joined players to start the match.")

        match.status = MatchStatus.ACTIVE
        match.ends_at = utcnow() + datetime.timedelta(seconds=match.duration)
        match_id = match.match_id
        self._scheduler.schedule(DEADLINE_TIMER, match.duration, lambda: self._deadline_reached(match_id))
        logging.info(f"Match {match_id} started, ends at {match.ends_at}")
        return match.ends_at

    def end(self) -> dict:
        match = self._require_match()
        if match.status is MatchStatus.ENDED:
            raise StateConflict("The current match has already ended.", status=410)
        if match.status is MatchStatus.WAITING:
            raise StateConflict("The current match has not yet started.")

        self._scheduler.cancel(DEADLINE_TIMER)
        return self._finish(match)

    def _finish(self, match: Match) -> dict:
        results = self.results()
        match.status = MatchStatus.ENDED
        match.ended_at = utcnow()
        logging.info(f"Match {match.match_id} ended, winners: {results['winners']}")
        return results

    def _deadline_reached(self, match_id: str) -> None:
        match = self._data.current_match
        if match is None or match.match_id != match_id or match.status is not MatchStatus.ACTIVE:
            logging.debug(f"Deadline for match {match_id} fired after it was superseded")
            return
        results = self._finish(match)
        if self.on_expired is not None:
            self.on_expired(match, results)

    def kick(self, plane_id: str) -> bool:
        """
        Remove a joined plane. While the match is active the plane is also
        disqualified; returns whether that happened.
        """
        match = self._data.current_match
        if match is None:
            raise NotFound("No match active.")
        if match.status is MatchStatus.ENDED:
            raise StateConflict("Cannot kick planes from an ended match.", status=410)
        plane = self._registry.get(plane_id)
        if plane is None or not plane.is_joined:
            raise NotFound("Plane is not in the current match.")

        disqualify = match.status is MatchStatus.ACTIVE
        self._registry.remove(plane_id, disqualify=disqualify)
        logging.info(f"Plane {plane_id=} {'disqualified' if disqualify else 'kicked'} from match {match.match_id}")
        return disqualify

    def results(self) -> dict:
        match = self._require_match()
        planes = [self._registry.get(plane_id) for plane_id in match.roster]
        return score_planes([plane for plane in planes if plane is not None])

    def clear(self) -> None:
        self._scheduler.cancel(DEADLINE_TIMER)
        self._replace(None)

    def snapshot(self) -> Optional[dict]:
        match = self._data.current_match
        if match is None:
            return None
        snapshot = match.to_dict()
        snapshot["timeRemaining"] = match.time_remaining()
        snapshot["scores"] = [plane.score() for plane in self._registry.list_joined()]
        return snapshot

    def _require_match(self) -> Match:
        if self._data.current_match is None:
            raise NotFound("There's no current match.")
        return self._data.current_match
