import pytest
import tomlkit

from config import Config, ConfigurationLoadError

CONFIG = """
[server]
# shown on the phones
name = "hangar"
http_port = 45045
websocket_port = 45046
"""

SECRETS = """
[server]
server_token = ""
"""


def write(tmp_path, config: str = CONFIG, secrets: str = SECRETS) -> Config:
    (tmp_path / "config.toml").write_text(config)
    (tmp_path / "secrets.toml").write_text(secrets)
    return Config(tmp_path / "config.toml", tmp_path / "secrets.toml")


@pytest.fixture(autouse=True)
def no_token_override(monkeypatch):
    monkeypatch.delenv("AERODUEL_SERVER_TOKEN", raising=False)


async def test_defaults_are_filled_in(tmp_path):
    config = write(tmp_path)
    await config.initialize()

    assert config.settings["server"]["bind"] == ""
    assert config.settings["server"]["advertise_host"] == ""
    assert config.settings["match"] == {
        "default_duration": 420,
        "default_max_players": 2,
        "disconnect_grace": 20,
        "hello_timeout": 5,
        "disconnect_policy": "immediate",
    }
    assert config.settings["mdns"] == {"enabled": True}


async def test_missing_server_token_is_generated_and_saved(tmp_path):
    config = write(tmp_path)
    await config.initialize()
    token = config.secret_settings["server"]["server_token"]
    await config.close()

    assert len(token) >= 32
    saved = tomlkit.parse((tmp_path / "secrets.toml").read_text())
    assert saved["server"]["server_token"] == token
    assert "# shown on the phones" in (tmp_path / "config.toml").read_text()


async def test_configured_token_is_kept(tmp_path):
    token = "k" * 40
    config = write(tmp_path, secrets=f'[server]\nserver_token = "{token}"\n')
    await config.initialize()
    assert config.secret_settings["server"]["server_token"] == token


async def test_environment_overrides_token(tmp_path, monkeypatch):
    monkeypatch.setenv("AERODUEL_SERVER_TOKEN", "from-the-environment")
    config = write(tmp_path)
    await config.initialize()
    await config.close()

    assert config.secret_settings["server"]["server_token"] == "from-the-environment"
    saved = tomlkit.parse((tmp_path / "secrets.toml").read_text())
    assert saved["server"]["server_token"] == ""


async def test_missing_file(tmp_path):
    config = Config(tmp_path / "config.toml", tmp_path / "secrets.toml")
    with pytest.raises(ConfigurationLoadError):
        await config.initialize()


async def test_broken_toml(tmp_path):
    config = write(tmp_path, config="[server\nname = 1")
    with pytest.raises(ConfigurationLoadError):
        await config.initialize()


@pytest.mark.parametrize("document", [
    CONFIG.replace("45045", '"45045"'),
    CONFIG.replace("45046", "70000"),
    CONFIG + '\n[match]\ndisconnect_policy = "never"\n',
    CONFIG + "\n[match]\ndefault_duration = 5\n",
])
async def test_schema_violations(tmp_path, document):
    config = write(tmp_path, config=document)
    with pytest.raises(ConfigurationLoadError):
        await config.initialize()


async def test_short_server_token_is_rejected(tmp_path):
    config = write(tmp_path, secrets='[server]\nserver_token = "short"\n')
    with pytest.raises(ConfigurationLoadError):
        await config.initialize()
