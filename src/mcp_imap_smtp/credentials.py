"""
Credentials Management
======================

Connection credentials for the IMAP and SMTP servers. Passwords normally come
from the config file; when one is left empty it is retrieved through the
biosecret keychain CLI instead. For testing, subprocess can be mocked.

Credentials are held in memory only, never written to disk or logged.
"""

import json
import subprocess
from dataclasses import dataclass, field

from contracts import (
    BiosecretDeniedError,
    BiosecretNotFoundError,
)

KEYCHAIN_PREFIX = "mcp-imap-smtp"


@dataclass(frozen=True)
class Credentials:
    """Server address and login for one mail service."""

    username: str
    password: str = field(repr=False)
    server: str
    port: int
    use_tls: bool = True


def keychain_key(service: str, username: str) -> str:
    return f"{KEYCHAIN_PREFIX}/{service}/{username}"


def retrieve_password(service: str, username: str) -> str:
    """
    Retrieve a password via biosecret CLI.

    PRE: biosecret CLI is available in PATH
    PRE: User has stored the password under "mcp-imap-smtp/{service}/{username}"

    POST: Returns the password on success. The stored value may be the bare
          password or a JSON object with a "password" key.

    ERRORS:
    - BiosecretDeniedError: User cancelled biometric prompt
    - BiosecretNotFoundError: No password under expected key
    """
    key = keychain_key(service, username)
    try:
        result = subprocess.run(
            ["biosecret", "get", key],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except subprocess.TimeoutExpired as e:
        raise BiosecretDeniedError("Biometric authentication timed out") from e
    except FileNotFoundError as e:
        raise BiosecretNotFoundError("biosecret CLI not found in PATH") from e

    if result.returncode != 0:
        stderr = result.stderr.lower() if result.stderr else ""
        if "cancel" in stderr or "denied" in stderr:
            raise BiosecretDeniedError("User cancelled biometric authentication")
        raise BiosecretNotFoundError(f"No password found for {key}")

    raw = result.stdout.strip()
    if not raw:
        raise BiosecretNotFoundError(f"Empty password stored for {key}")
    if raw.startswith("{"):
        try:
            return json.loads(raw)["password"]
        except (json.JSONDecodeError, KeyError) as e:
            raise BiosecretNotFoundError("Invalid credential format") from e
    return raw
