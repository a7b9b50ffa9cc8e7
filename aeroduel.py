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
import os
import signal

from config import Config, ConfigurationLoadError
from http_server import HttpServer
from logger import setup_logging
from match_manager import MatchManager
from mdns_registration import AeroDuelZeroconf
from server_data import ServerData
from websocket_server import WebsocketServer


class AeroDuel:

    def __init__(self, config, secrets, loop: asyncio.AbstractEventLoop):
        self._config = config
        self._secrets = secrets
        self._loop = loop
        self._mdns = AeroDuelZeroconf(self._config)
        self._data = ServerData()
        self._manager = MatchManager(self._config, self._secrets, self._loop, self._data)
        self._websocket_server = WebsocketServer(self._config, self._loop, self._data, self._manager)
        self._http_server = HttpServer(self._config, self._manager)

    def request_shutdown(self):
        logging.info("Shutdown requested")
        self._data.shutdown_event.set()

    async def begin(self):
        logging.info("Starting AeroDuel Server")
        async with self._websocket_server:
            logging.info("Starting AeroDuel HTTP Server")
            async with self._http_server:
                logging.info("Starting MDNS")
                async with self._mdns:
                    try:
                        logging.info("Ctrl^C to quit")
                        await self._data.shutdown_event.wait()
                    except asyncio.CancelledError:
                        logging.info("Cancelled ...")
                    finally:
                        logging.info("Stopping Server ...")
                        self._manager.shutdown()


async def main():
    logging.info("Starting aeroduel ...")

    config = Config(
        os.environ.get("AERODUEL_CONFIG", "./config.toml"),
        os.environ.get("AERODUEL_SECRETS", "./secrets.toml"),
    )
    loop = asyncio.get_running_loop()

    try:
        await config.initialize()

        aeroduel = AeroDuel(config.settings, config.secret_settings, loop)
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, aeroduel.request_shutdown)
            except NotImplementedError:
                logging.debug(f"Signal handlers unavailable, {sig!r} not hooked")
        await aeroduel.begin()
    except ConfigurationLoadError:
        logging.error("Could not load configuration. Exiting")
        return
    finally:
        await config.close()


def run():
    setup_logging()
    asyncio.run(main())


if __name__ == "__main__":
    run()
