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

from typing import Optional


class AeroDuelError(Exception):
    """
    Base for every failure an action can report back to a caller.
    None of these are raised after state has been touched.
    """
    category: str = "error"
    status: int = 500

    def __init__(self, message: str, status: Optional[int] = None, extra: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status
        self.extra = extra or {}

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "error": self.message,
            "category": self.category,
        }
        body.update(self.extra)
        return body


class ValidationError(AeroDuelError):
    category = "validation"
    status = 400


class AuthError(AeroDuelError):
    category = "auth"
    status = 401


class StateConflict(AeroDuelError):
    category = "conflict"
    status = 409


class NotFound(AeroDuelError):
    category = "not_found"
    status = 404


class InternalInconsistency(AeroDuelError):
    category = "internal"
    status = 500
