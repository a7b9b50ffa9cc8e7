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

import json
import logging
from typing import Optional

from aiohttp import web

from errors import AeroDuelError, ValidationError
from match_manager import MatchManager

MANAGER_KEY = web.AppKey("manager", MatchManager)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except AeroDuelError as e:
        logging.debug(f"{request.method} {request.path} -> {e.status} {e.message}")
        return web.json_response(e.to_dict(), status=e.status)


async def read_json(request: web.Request):
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError("Invalid JSON") from e


async def handle_register(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].register(payload, request.remote))


async def handle_join_match(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].join(payload))


async def handle_hit(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].hit(payload))


async def handle_new_match(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].create_match(payload))


async def handle_start_match(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].start_match(payload))


async def handle_end_match(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].end_match(payload))


async def handle_kick(request: web.Request):
    payload = await read_json(request)
    return web.json_response(request.app[MANAGER_KEY].kick(payload))


async def handle_match(request: web.Request):
    return web.json_response(request.app[MANAGER_KEY].current_match())


async def handle_planes(request: web.Request):
    return web.json_response(request.app[MANAGER_KEY].planes())


async def handle_status(request: web.Request):
    return web.json_response(request.app[MANAGER_KEY].status())


def build_app(manager: MatchManager) -> web.Application:
    app = web.Application(middlewares=[error_middleware])
    app[MANAGER_KEY] = manager
    app.router.add_post("/api/register", handle_register)
    app.router.add_post("/api/join-match", handle_join_match)
    app.router.add_post("/api/hit", handle_hit)
    app.router.add_post("/api/new-match", handle_new_match)
    app.router.add_post("/api/start-match", handle_start_match)
    app.router.add_post("/api/end-match", handle_end_match)
    app.router.add_post("/api/kick", handle_kick)
    app.router.add_get("/api/match", handle_match)
    app.router.add_get("/api/planes", handle_planes)
    app.router.add_get("/api/status", handle_status)
    return app


class HttpServer:

    def __init__(self, config, manager: MatchManager):
        self._config = config
        self._app = build_app(manager)
        self._runner: Optional[web.AppRunner] = None

    async def __aenter__(self):
        logging.debug(f"Starting http server")
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(
            self._runner,
            self._config["server"]["bind"] or None,
            int(self._config["server"]["http_port"]),
        )
        await site.start()
        logging.info(f"HTTP server listening on port {self._config['server']['http_port']}")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._runner is not None:
            logging.debug(f"Stopping http server")
            await self._runner.cleanup()
            self._runner = None
