"""
Task Gateway — Account Linking Service.

Binds a Telegram identity to an internal account with a one-time code:
the user sends /connect in chat and receives a 6-digit code, then types
that code into the app, which calls verify_connection_code.
"""

from __future__ import annotations

import logging
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from gateway.config import settings
from gateway.data.models import COMMAND_CONNECT, LinkedAccount

if TYPE_CHECKING:
    from gateway.data.db import AccountDB, PendingCommandDB

logger = logging.getLogger(__name__)

CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 5

# Verification failure reasons
INVALID_CODE = "invalid_code"
UNKNOWN_ACCOUNT = "unknown_account"
ALREADY_LINKED_ELSEWHERE = "already_linked_elsewhere"
ERROR = "error"


@dataclass
class ConnectionCodeResult:
    code: str | None = None
    already_connected: bool = False
    account: LinkedAccount | None = None


@dataclass
class VerificationResult:
    success: bool
    reason: str = ""
    account: LinkedAccount | None = None


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_LENGTH):0{CODE_LENGTH}d}"


class AccountLinkingService:
    """Issues and verifies connection codes."""

    def __init__(self, accounts: AccountDB, commands: PendingCommandDB) -> None:
        self._accounts = accounts
        self._commands = commands

    def _code_ttl(self) -> timedelta:
        return timedelta(minutes=settings.CONNECT_CODE_TTL_MINUTES)

    def issue_connection_code(
        self,
        chat_id: int,
        telegram_user_id: int,
        username: str | None,
        now: datetime | None = None,
    ) -> ConnectionCodeResult:
        """Return a fresh code, or the already-connected signal for linked users.

        A linked user gets no new PendingCommand, however often they ask.
        """
        now = now or datetime.now(timezone.utc)

        account = self._accounts.find_by_telegram_user(telegram_user_id)
        if account is not None and account.is_telegram_connected:
            logger.info("Telegram user %d already linked to %s", telegram_user_id, account.id)
            return ConnectionCodeResult(already_connected=True, account=account)

        issued_after = now - self._code_ttl()
        code = generate_code()
        for _ in range(MAX_CODE_ATTEMPTS - 1):
            if self._commands.find_connect_by_code(code, issued_after) is None:
                break
            logger.info("Connection code collision, regenerating")
            code = generate_code()

        self._commands.add_command(
            telegram_user_id=telegram_user_id,
            telegram_chat_id=chat_id,
            command=COMMAND_CONNECT,
            payload={"code": code, "username": username, "issued_at": now.isoformat()},
            now=now,
        )
        return ConnectionCodeResult(code=code)

    def verify_connection_code(
        self,
        account_id: str,
        code: str,
        now: datetime | None = None,
    ) -> VerificationResult:
        """Bind the Telegram identity that issued `code` to `account_id`.

        The pending command is consumed before the account is touched, so of two
        concurrent verifications of the same code only one can succeed.
        """
        now = now or datetime.now(timezone.utc)
        code = (code or "").strip()
        if not code:
            return VerificationResult(success=False, reason=INVALID_CODE)

        try:
            account = self._accounts.get_account(account_id)
            if account is None:
                return VerificationResult(success=False, reason=UNKNOWN_ACCOUNT)

            pending = self._commands.find_connect_by_code(code, now - self._code_ttl())
            if pending is None:
                return VerificationResult(success=False, reason=INVALID_CODE)

            if not self._commands.mark_processed(pending.id, now):
                logger.info("Connection code for command #%d already consumed", pending.id)
                return VerificationResult(success=False, reason=INVALID_CODE)

            try:
                self._accounts.link_telegram(
                    account_id,
                    telegram_user_id=pending.telegram_user_id,
                    telegram_chat_id=pending.telegram_chat_id,
                    telegram_username=pending.payload.get("username"),
                    now=now,
                )
            except sqlite3.IntegrityError:
                logger.warning(
                    "Telegram user %d is already linked to another account (target %s)",
                    pending.telegram_user_id, account_id,
                )
                return VerificationResult(success=False, reason=ALREADY_LINKED_ELSEWHERE)

            linked = self._accounts.get_account(account_id)
        except sqlite3.Error as exc:
            logger.error("Failed to verify connection code for account %s: %s", account_id, exc)
            return VerificationResult(success=False, reason=ERROR)

        logger.info(
            "Account %s connected to Telegram user %d", account_id, pending.telegram_user_id,
        )
        return VerificationResult(success=True, account=linked)

    def disconnect_account(self, account_id: str) -> bool:
        return self._accounts.unlink_telegram(account_id)

    def purge_stale_commands(self, now: datetime | None = None) -> int:
        """Delete consumed commands and codes/comment markers past their lifetime."""
        now = now or datetime.now(timezone.utc)
        return self._commands.purge_stale(
            connect_before=now - self._code_ttl(),
            comment_before=now - timedelta(minutes=settings.PENDING_COMMENT_TTL_MINUTES),
        )
