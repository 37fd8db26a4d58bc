"""
Mailbox MCP Contract Index
==========================

AUTHORITY: This file is the SINGLE authoritative entrypoint for all
contracts. Import from here, not from individual contract files.
"""

import re

from contracts.mailbox_contract import (
    # Test Case Index
    TEST_CASES,
    AttachmentContent,
    AttachmentInfo,
    AttachmentNotFoundError,
    AuthFailedError,
    BiosecretDeniedError,
    BiosecretNotFoundError,
    # Contracts (Protocols)
    Broadcaster,
    ConfigError,
    ConnectionFailedError,
    EmailDetail,
    # Error Types
    EmailMCPError,
    EmailNotFoundError,
    InvalidArgumentError,
    InvalidEmailIdError,
    LifecycleContract,
    MailboxGateway,
    # Domain Types
    MessageSummary,
    NewMailPollerContract,
    NotificationEvent,
    PollerState,
    ReadMailContract,
    SendEmailContract,
    SendFailedError,
)

__all__ = [
    # Domain Types
    "PollerState",
    "MessageSummary",
    "AttachmentInfo",
    "AttachmentContent",
    "EmailDetail",
    "NotificationEvent",
    # Error Types
    "EmailMCPError",
    "ConfigError",
    "BiosecretDeniedError",
    "BiosecretNotFoundError",
    "ConnectionFailedError",
    "AuthFailedError",
    "EmailNotFoundError",
    "AttachmentNotFoundError",
    "InvalidEmailIdError",
    "InvalidArgumentError",
    "SendFailedError",
    # Contracts
    "MailboxGateway",
    "Broadcaster",
    "NewMailPollerContract",
    "LifecycleContract",
    "SendEmailContract",
    "ReadMailContract",
    # Test Traceability
    "TEST_CASES",
    # Functions
    "audit_contract_coverage",
]

_CONTRACTS = [
    MailboxGateway,
    Broadcaster,
    NewMailPollerContract,
    LifecycleContract,
    SendEmailContract,
    ReadMailContract,
]

_CLAUSE_RE = re.compile(r"\b((?:PRE|POST|INV)-[A-Z]+-\d{2})\b")
_ERROR_RE = re.compile(r"^\s*- ([A-Z_]+)(?: / ([A-Z_]+))?:", re.MULTILINE)


def _declared_clauses() -> set[str]:
    """Collect clause IDs from the contract docstrings."""
    clauses = set()
    for contract in _CONTRACTS:
        doc = contract.__doc__ or ""
        clauses.update(_CLAUSE_RE.findall(doc))
        for first, second in _ERROR_RE.findall(doc):
            clauses.add(f"ERRORS: {first}")
            if second:
                clauses.add(f"ERRORS: {second}")
    return clauses


def audit_contract_coverage() -> dict:
    """
    Audit which contract clauses have test coverage.

    Returns dict with:
    - covered: clauses with at least one test
    - uncovered: clauses with no tests
    - test_count: total tests defined
    """
    covered_clauses = set()
    for test_info in TEST_CASES.values():
        for clause in test_info.get("enforces", []):
            covered_clauses.add(clause)

    all_clauses = _declared_clauses()
    uncovered = all_clauses - covered_clauses

    return {
        "covered": sorted(covered_clauses),
        "uncovered": sorted(uncovered),
        "test_count": len(TEST_CASES),
        "coverage_pct": round(len(covered_clauses & all_clauses) / len(all_clauses) * 100, 1),
    }
