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
import os
from pathlib import Path
from secrets import token_urlsafe

from voluptuous import Schema, Required, Optional, Any, All, Range, Length
import voluptuous.error
import aiofiles
import tomlkit
import tomlkit.exceptions


class ConfigurationLoadError(Exception): pass


port = All(int, Range(min=0, max=65535))

config_schema = Schema({
    Required('server'): {
        Required('name'): All(str, Length(min=1)),
        Required('http_port'): port,
        Required('websocket_port'): port,
        Optional('bind', default=""): str,
        Optional('advertise_host', default=""): str,
    },
    Optional('match', default={}): {
        Optional('default_duration', default=420): All(int, Range(min=30, max=1800)),
        Optional('default_max_players', default=2): All(int, Range(min=2, max=16)),
        Optional('disconnect_grace', default=20): All(Any(int, float), Range(min=0)),
        Optional('hello_timeout', default=5): All(Any(int, float), Range(min=0)),
        Optional('disconnect_policy', default="immediate"): Any("immediate", "deferred"),
    },
    Optional('mdns', default={}): {
        Optional('enabled', default=True): bool,
    },
})

secrets_schema = Schema({
    Required('server'): {
        Optional('server_token', default=""): Any("", All(str, Length(min=32, max=256))),
    },
})


class Config:
    """
    config.toml holds ports and match defaults, secrets.toml the privileged
    server token. Both are tomlkit documents so a save keeps their comments.
    `settings` / `secret_settings` are the validated copies with defaults filled in.
    """
    config: tomlkit.TOMLDocument
    secrets: tomlkit.TOMLDocument
    settings: dict
    secret_settings: dict
    secrets_opened: bool = False
    config_opened: bool = False

    def __init__(self, config_location: Path, secrets_location: Path):
        self.config_location = Path(config_location)
        self.secrets_location = Path(secrets_location)

    async def _load(self, location: Path, schema: Schema, label: str):
        try:
            async with aiofiles.open(location, 'r') as document_file:
                file_data = await document_file.read()
            document = tomlkit.parse(file_data)
            logging.debug(f"Loaded {label} without toml format error")
            logging.debug("Validating against Schema.")
            validated = schema(document.unwrap())
            logging.debug("Validated against Schema.")
        except FileNotFoundError as e:
            logging.exception(e)
            logging.warning(f"Could not find {location}. Copy from .example/{location.name} to {location}")
            raise ConfigurationLoadError() from e
        except IOError as e:
            logging.exception(e)
            logging.warning(f"Could not open file {location}")
            raise ConfigurationLoadError() from e
        except tomlkit.exceptions.ParseError as e:
            logging.exception(e)
            logging.warning(f"{label} in {location} is invalid")
            raise ConfigurationLoadError() from e
        except voluptuous.error.MultipleInvalid as e:
            logging.exception(e)
            logging.warning(f"{label} in {location} does not match expected format")
            logging.warning(f"Issue configuration item: {e.path}")
            raise ConfigurationLoadError() from e
        return document, validated

    async def initialize(self):
        self.config, self.settings = await self._load(self.config_location, config_schema, "Configuration")
        self.config_opened = True
        logging.debug(f"Loaded Configuration")

        self.secrets, self.secret_settings = await self._load(self.secrets_location, secrets_schema, "Secrets")
        self.secrets_opened = True
        logging.debug(f"Loaded Secrets")

        override = os.environ.get("AERODUEL_SERVER_TOKEN")
        if override:
            self.secret_settings["server"]["server_token"] = override
            logging.debug("Server token taken from environment")
        elif not self.secret_settings["server"]["server_token"]:
            token = token_urlsafe(32)
            self.secrets["server"]["server_token"] = token
            self.secret_settings["server"]["server_token"] = token
            logging.warning(f"No server token configured, generated one into {self.secrets_location}")

        logging.info(f"Configuration loaded.")

    async def close(self):
        if self.config_opened is True:
            async with aiofiles.open(self.config_location, 'w') as config_file:
                await config_file.write(tomlkit.dumps(self.config))
            logging.debug("Config file saved to disk.")

        if self.secrets_opened is True:
            async with aiofiles.open(self.secrets_location, 'w') as secrets_file:
                await secrets_file.write(tomlkit.dumps(self.secrets))
            logging.debug("Secrets file saved to disk.")
        logging.info(f"Configuration Saved.")
