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
import secrets
import socket
import uuid
from typing import Optional
from urllib.parse import urlencode


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def isoformat(moment: Optional[datetime.datetime]) -> Optional[str]:
    if moment is None:
        return None
    return moment.isoformat().replace("+00:00", "Z")


def generate_game_pin() -> str:
    return "{0:06}".format(100000 + secrets.randbelow(900000))


def generate_match_id() -> str:
    return uuid.uuid4().hex


def generate_auth_token() -> str:
    return secrets.token_hex(16)


def get_local_ip_address() -> Optional[str]:
    """
    LAN address of the interface that routes outward. connect() on a UDP
    socket sends nothing, it only selects the interface.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.connect(("10.255.255.255", 1))
        address = sock.getsockname()[0]
    except OSError as e:
        logging.debug(f"Could not detect local IP address: {e}")
        return None
    finally:
        sock.close()

    if address.startswith("127.") or address == "0.0.0.0":
        return None
    return address


def build_join_link(host: str, port: int, pin: str) -> str:
    return "aeroduel://join?" + urlencode({"host": host, "port": port, "pin": pin})
