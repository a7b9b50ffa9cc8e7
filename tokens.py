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
import secrets

from server_data import ServerData
from utils import generate_auth_token, generate_match_id


class TokenStore:
    """
    Device tokens live as long as the process session, user tokens as long as
    one match. Tokens are opaque; only equality is ever checked.
    """

    def __init__(self, data: ServerData):
        self._data = data

    def issue_device_token(self, plane_id: str) -> str:
        token = generate_auth_token()
        self._data.device_tokens[(self._data.session_id, plane_id)] = token
        return token

    def issue_user_token(self, match_id: str, user_id: str) -> str:
        token = generate_auth_token()
        self._data.user_tokens[(match_id, user_id)] = token
        return token

    def validate_device(self, plane_id, token) -> bool:
        return self._compare(self._data.device_tokens.get((self._data.session_id, plane_id)), token)

    def validate_user(self, match_id, user_id, token) -> bool:
        return self._compare(self._data.user_tokens.get((match_id, user_id)), token)

    def purge_user_tokens(self):
        if self._data.user_tokens:
            logging.debug(f"Purging {len(self._data.user_tokens)} user tokens")
        self._data.user_tokens.clear()

    def rotate_session(self) -> str:
        """Start a new process session; every device token issued so far stops validating."""
        self._data.session_id = generate_match_id()
        self._data.device_tokens.clear()
        logging.info("Device session rotated, earlier plane tokens no longer validate")
        return self._data.session_id

    @staticmethod
    def _compare(expected, token) -> bool:
        if expected is None or not isinstance(token, str):
            return False
        return secrets.compare_digest(expected.encode(), token.encode())
