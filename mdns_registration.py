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
import socket
from typing import Optional

import zeroconf
from zeroconf import IPVersion
from zeroconf.asyncio import AsyncZeroconf, AsyncServiceInfo

from utils import get_local_ip_address

SERVICE_VERSION = "1"


def build_services(name: str, address: str, port: int) -> list[AsyncServiceInfo]:
    """
    `AeroDuel Server._aeroduel._tcp` for discovery and `<name>._http._tcp` so
    `<name>.local` resolves to this machine.
    """
    properties = {"path": "/", "version": SERVICE_VERSION}
    addresses = [socket.inet_aton(address)]
    server = f"{name}.local."
    return [
        AsyncServiceInfo(
            "_aeroduel._tcp.local.",
            "AeroDuel Server._aeroduel._tcp.local.",
            addresses=addresses,
            port=port,
            properties=properties,
            server=server,
        ),
        AsyncServiceInfo(
            "_http._tcp.local.",
            f"{name}._http._tcp.local.",
            addresses=addresses,
            port=port,
            properties=properties,
            server=server,
        ),
    ]


class AeroDuelZeroconf:

    def __init__(self, config):
        self._config = config
        self._zeroconf: Optional[AsyncZeroconf] = None
        self._services: list[AsyncServiceInfo] = []

    async def start(self):
        if not self._config["mdns"]["enabled"]:
            logging.info("mDNS disabled in configuration")
            return
        address = get_local_ip_address()
        if address is None:
            logging.warning("No valid local IPv4 found. mDNS will not be published.")
            return

        name = self._config["server"]["name"]
        try:
            self._zeroconf = AsyncZeroconf(ip_version=IPVersion.V4Only)
            self._services = build_services(name, address, int(self._config["server"]["http_port"]))
            for service in self._services:
                await self._zeroconf.async_register_service(service)
            logging.info(f"Published mDNS: {name}.local -> {address}")
        except zeroconf.Error as e:
            logging.exception(e)
            logging.error("Failed to publish mDNS service, clients must use the IP address")
            await self.stop()

    async def stop(self):
        if self._zeroconf is None:
            return
        await self._zeroconf.async_unregister_all_services()
        await self._zeroconf.async_close()
        self._zeroconf = None
        logging.debug(f"Unregistered services.")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
