import asyncio

from aeroduel import AeroDuel
from conftest import SERVER_TOKEN, make_config


async def test_server_runs_until_shutdown_is_requested():
    server = AeroDuel(make_config(), {"server": {"server_token": SERVER_TOKEN}}, asyncio.get_running_loop())
    running = asyncio.create_task(server.begin())
    await asyncio.sleep(0.2)
    assert not running.done()

    server.request_shutdown()

    await asyncio.wait_for(running, timeout=5)
