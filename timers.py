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
from typing import Callable


class TaskScheduler:
    """
    Keyed one-shot timers on the event loop. Scheduling a key that is already
    pending replaces the old timer.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._handles: dict[str, asyncio.TimerHandle] = dict()

    def schedule(self, key: str, delay: float, callback: Callable[[], None]) -> None:
        self.cancel(key)

        def fire():
            self._handles.pop(key, None)
            try:
                callback()
            except Exception as e:
                logging.exception(e)
                logging.error(f"Timer {key=} callback failed")

        self._handles[key] = self._loop.call_later(delay, fire)
        logging.debug(f"Scheduled timer {key=} in {delay}s")

    def cancel(self, key: str) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        logging.debug(f"Cancelled timer {key=}")
        return True

    def pending(self, key: str) -> bool:
        return key in self._handles

    def cancel_all(self) -> None:
        for key in list(self._handles):
            self.cancel(key)
