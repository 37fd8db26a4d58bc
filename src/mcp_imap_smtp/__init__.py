"""
IMAP/SMTP MCP Server
====================

MCP server for sending and reading email over SMTP/IMAP, with push
notifications for newly arrived mail.
"""

__version__ = "1.0.0"

from src.mcp_imap_smtp.broadcast import NullBroadcaster, SessionBroadcaster
from src.mcp_imap_smtp.config import Config, load_config
from src.mcp_imap_smtp.credentials import Credentials, retrieve_password
from src.mcp_imap_smtp.imap_client import EmailIMAPClient
from src.mcp_imap_smtp.lifecycle import ClientTracker
from src.mcp_imap_smtp.notifications import NewMailPoller, Watermark
from src.mcp_imap_smtp.server import EmailMCPServer, create_server
from src.mcp_imap_smtp.smtp_client import SMTPClient

__all__ = [
    "EmailMCPServer",
    "create_server",
    "EmailIMAPClient",
    "SMTPClient",
    "NewMailPoller",
    "Watermark",
    "ClientTracker",
    "SessionBroadcaster",
    "NullBroadcaster",
    "Config",
    "load_config",
    "Credentials",
    "retrieve_password",
]
