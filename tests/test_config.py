"""
Configuration and Credential Tests
==================================

Config loading with defaults, and the biosecret password fallback with
subprocess mocked.
"""

import json
from unittest.mock import Mock, patch

import pytest

from contracts import BiosecretDeniedError, BiosecretNotFoundError, ConfigError
from src.mcp_imap_smtp.config import config_from_dict, load_config
from src.mcp_imap_smtp.credentials import keychain_key, retrieve_password

MINIMAL = {
    "imap": {"server": "imap.example.com", "username": "me@example.com", "password": "imap-pass"},
    "smtp": {"server": "smtp.example.com", "username": "me@example.com", "password": "smtp-pass"},
    "my_email": "me@example.com",
}


@pytest.fixture
def mock_biosecret_success():
    """Mock biosecret returning a JSON credential."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = Mock(
            returncode=0,
            stdout='{"username": "me@example.com", "password": "from-keychain"}',
            stderr="",
        )
        yield mock_run


@pytest.fixture
def mock_biosecret_denied():
    """Mock biosecret when user cancels biometric prompt."""
    with patch("subprocess.run") as mock_run:
        mock_run.return_value = Mock(
            returncode=1,
            stdout="",
            stderr="User cancelled biometric authentication",
        )
        yield mock_run


class TestLoadConfig:

    def test_defaults_applied(self):
        config = config_from_dict(MINIMAL)

        assert config.imap.port == 993
        assert config.imap.use_tls is True
        assert config.smtp.port == 587
        assert config.smtp.use_tls is False
        assert config.http.host == "localhost"
        assert config.http.port == 8081
        assert config.notifications.check_interval_seconds == 30
        assert config.contacts == {}

    def test_explicit_values(self):
        data = {
            **MINIMAL,
            "smtp": {**MINIMAL["smtp"], "port": 465, "require_tls": True},
            "http": {"host": "0.0.0.0", "port": 9000},
            "notifications": {"check_interval_seconds": 5},
            "contacts": {"alice": "alice@example.com"},
        }

        config = config_from_dict(data)

        assert config.smtp.port == 465
        assert config.smtp.use_tls is True
        assert config.http.port == 9000
        assert config.notifications.check_interval_seconds == 5

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(MINIMAL), encoding="utf-8")

        config = load_config(path)

        assert config.my_email == "me@example.com"
        assert config.imap.password == "imap-pass"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "absent.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigError, match="parse"):
            load_config(path)

    def test_missing_server(self):
        with pytest.raises(ConfigError):
            config_from_dict({**MINIMAL, "imap": {"username": "me@example.com"}})

    def test_bad_port(self):
        with pytest.raises(ConfigError):
            config_from_dict({**MINIMAL, "http": {"port": "eighty"}})

    def test_password_from_keychain(self, mock_biosecret_success):
        data = {**MINIMAL, "imap": {"server": "imap.example.com", "username": "me@example.com"}}

        config = config_from_dict(data)

        assert config.imap.password == "from-keychain"
        assert mock_biosecret_success.call_args.args[0] == [
            "biosecret",
            "get",
            "mcp-imap-smtp/imap/me@example.com",
        ]

    def test_password_not_in_repr(self):
        config = config_from_dict(MINIMAL)
        assert "imap-pass" not in repr(config)
        assert "smtp-pass" not in repr(config)


class TestContacts:

    def test_resolve_email(self):
        config = config_from_dict({**MINIMAL, "contacts": {"alice": "alice@example.com"}})

        assert config.resolve_email("alice") == "alice@example.com"
        assert config.resolve_email("bob@example.com") == "bob@example.com"

    def test_contacts_description(self):
        config = config_from_dict({**MINIMAL, "contacts": {"alice": "alice@example.com"}})

        assert config.contacts_description() == "Available contacts:\n  - alice: alice@example.com\n"

    def test_no_contacts_description(self):
        assert config_from_dict(MINIMAL).contacts_description() == "No contacts configured."


class TestBiosecret:

    def test_keychain_key(self):
        assert keychain_key("smtp", "me@example.com") == "mcp-imap-smtp/smtp/me@example.com"

    def test_json_value(self, mock_biosecret_success):
        assert retrieve_password("imap", "me@example.com") == "from-keychain"

    def test_raw_value(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout="plain-secret\n", stderr="")
            assert retrieve_password("imap", "me@example.com") == "plain-secret"

    def test_denied(self, mock_biosecret_denied):
        with pytest.raises(BiosecretDeniedError):
            retrieve_password("imap", "me@example.com")

    def test_not_found(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=1, stdout="", stderr="item not found")
            with pytest.raises(BiosecretNotFoundError):
                retrieve_password("imap", "me@example.com")

    def test_cli_missing(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("biosecret")):
            with pytest.raises(BiosecretNotFoundError):
                retrieve_password("imap", "me@example.com")

    def test_malformed_json(self):
        with patch("subprocess.run") as mock_run:
            mock_run.return_value = Mock(returncode=0, stdout='{"user": "x"}', stderr="")
            with pytest.raises(BiosecretNotFoundError):
                retrieve_password("imap", "me@example.com")
