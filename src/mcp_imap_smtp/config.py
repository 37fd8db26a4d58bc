"""
Configuration
=============

Loads the JSON config file into frozen dataclasses and applies defaults.

Example::

    {
      "imap": {"server": "imap.example.com", "port": 993,
               "username": "me@example.com", "password": "...", "use_tls": true},
      "smtp": {"server": "smtp.example.com", "port": 587,
               "username": "me@example.com", "password": "...", "require_tls": true},
      "my_email": "me@example.com",
      "contacts": {"alice": "alice@example.com"},
      "http": {"host": "localhost", "port": 8081},
      "notifications": {"check_interval_seconds": 30}
    }
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from contracts import ConfigError
from src.mcp_imap_smtp.credentials import Credentials, retrieve_password

DEFAULT_CONFIG_NAME = "config.json"
DEFAULT_IMAP_PORT = 993
DEFAULT_SMTP_PORT = 587
DEFAULT_HTTP_HOST = "localhost"
DEFAULT_HTTP_PORT = 8081
DEFAULT_CHECK_INTERVAL_SECONDS = 30


@dataclass(frozen=True)
class HTTPSettings:
    host: str = DEFAULT_HTTP_HOST
    port: int = DEFAULT_HTTP_PORT


@dataclass(frozen=True)
class NotificationSettings:
    check_interval_seconds: int = DEFAULT_CHECK_INTERVAL_SECONDS


@dataclass(frozen=True)
class Config:
    """Complete server configuration."""

    imap: Credentials
    smtp: Credentials
    my_email: str
    contacts: dict[str, str] = field(default_factory=dict)
    http: HTTPSettings = field(default_factory=HTTPSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)

    def contacts_description(self) -> str:
        """Contacts formatted for tool descriptions."""
        if not self.contacts:
            return "No contacts configured."

        lines = ["Available contacts:"]
        for name, address in self.contacts.items():
            lines.append(f"  - {name}: {address}")
        return "\n".join(lines) + "\n"

    def resolve_email(self, name_or_email: str) -> str:
        """Map a contact name to its address; anything else is returned unchanged."""
        return self.contacts.get(name_or_email, name_or_email)


def default_config_path() -> Path:
    return Path.cwd() / DEFAULT_CONFIG_NAME


def load_config(path: str | Path | None = None) -> Config:
    """
    Load configuration from a JSON file.

    If path is None, config.json in the current working directory is used.

    ERRORS:
    - ConfigError: file unreadable, not JSON, or missing required fields
    - BiosecretDeniedError / BiosecretNotFoundError: password lookup failed
    """
    config_path = Path(path) if path else default_config_path()

    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Failed to read config file {config_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Failed to parse config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Config file must contain a JSON object")

    return config_from_dict(data)


def config_from_dict(data: dict[str, Any]) -> Config:
    """Build a Config from parsed JSON, applying defaults."""
    imap = _section(data, "imap")
    smtp = _section(data, "smtp")
    http = _section(data, "http")
    notifications = _section(data, "notifications")

    contacts = data.get("contacts") or {}
    if not isinstance(contacts, dict):
        raise ConfigError("'contacts' must be an object of name -> address")

    return Config(
        imap=_credentials("imap", imap, DEFAULT_IMAP_PORT, tls_key="use_tls"),
        smtp=_credentials("smtp", smtp, DEFAULT_SMTP_PORT, tls_key="require_tls"),
        my_email=data.get("my_email", ""),
        contacts={str(k): str(v) for k, v in contacts.items()},
        http=HTTPSettings(
            host=http.get("host") or DEFAULT_HTTP_HOST,
            port=_int(http, "port") or DEFAULT_HTTP_PORT,
        ),
        notifications=NotificationSettings(
            check_interval_seconds=(
                _int(notifications, "check_interval_seconds") or DEFAULT_CHECK_INTERVAL_SECONDS
            ),
        ),
    )


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' must be an object")
    return section


def _int(section: dict[str, Any], key: str) -> int:
    value = section.get(key) or 0
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be an integer, got {value!r}") from e


def _credentials(service: str, section: dict[str, Any], default_port: int, *, tls_key: str) -> Credentials:
    server = section.get("server")
    username = section.get("username")
    if not server or not username:
        raise ConfigError(f"'{service}.server' and '{service}.username' are required")

    password = section.get("password") or retrieve_password(service, username)

    return Credentials(
        username=username,
        password=password,
        server=server,
        port=_int(section, "port") or default_port,
        use_tls=bool(section.get(tls_key, service == "imap")),
    )
