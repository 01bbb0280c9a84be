"""
Task Gateway — Command Grammar Parser.

Turns the raw text of an inbound chat message into one typed command:
/start, /connect, /mytasks, /assign, or free text. Also resolves the
natural-language due expressions accepted by /assign.

Everything here is a pure function of its input and never raises on user text.
"""

from __future__ import annotations

import logging
import re
from datetime import date, datetime, timedelta
from typing import Union
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from gateway.config import settings

logger = logging.getLogger(__name__)

ASSIGN_USAGE = (
    "Usage: /assign @username Task title due: tomorrow priority: high\n"
    "due: today | tomorrow | in N days | YYYY-MM-DD (optional)\n"
    "priority: low | medium | high (optional)"
)

PRIORITIES = ("low", "medium", "high")

# ---------------------------------------------------------------------------
# Command types
# ---------------------------------------------------------------------------


class StartCommand(BaseModel):
    command: str = "start"


class ConnectCommand(BaseModel):
    command: str = "connect"


class MyTasksCommand(BaseModel):
    command: str = "mytasks"


class AssignCommand(BaseModel):
    """Structured /assign request.

    Example: "/assign @dana Prepare report due: tomorrow priority: high"
    -> assignee="dana", title="Prepare report", due_expr="tomorrow", priority="high"
    """
    command: str = "assign"
    assignee: str
    title: str
    due_expr: str | None = None
    priority: str | None = None


class InvalidAssign(BaseModel):
    command: str = "invalid_assign"
    usage: str = ASSIGN_USAGE


class FreeText(BaseModel):
    command: str = "free_text"
    text: str


Command = Union[StartCommand, ConnectCommand, MyTasksCommand, AssignCommand, InvalidAssign, FreeText]

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

_HANDLE_RE = re.compile(r"@(\w+)\s+(.+)", re.DOTALL)
_KEYWORD_RE = re.compile(r"(?:^|\s)(?:due|priority):", re.IGNORECASE)
_TAIL_RE = re.compile(
    r"\s*(?:due:\s*(?P<due>.*?))?\s*(?:priority:\s*(?P<priority>\S+))?\s*",
    re.IGNORECASE | re.DOTALL,
)


def parse_assign(args: str) -> AssignCommand | InvalidAssign:
    """Parse the arguments of /assign (everything after the command token)."""
    handle_match = _HANDLE_RE.fullmatch(args.strip())
    if handle_match is None:
        return InvalidAssign()

    assignee, body = handle_match.group(1), handle_match.group(2)

    keyword = _KEYWORD_RE.search(body)
    title = (body[:keyword.start()] if keyword else body).strip()
    if not title:
        return InvalidAssign()
    if keyword is None:
        return AssignCommand(assignee=assignee, title=title)

    tail = _TAIL_RE.fullmatch(body[keyword.start():])
    if tail is None:
        # e.g. priority before due, or junk after priority
        return InvalidAssign()

    due_expr = tail.group("due")
    priority = tail.group("priority")

    if due_expr is not None:
        due_expr = due_expr.strip()
        if not due_expr or re.search(r"priority:", due_expr, re.IGNORECASE):
            return InvalidAssign()
    if priority is not None:
        priority = priority.lower()
        if priority not in PRIORITIES:
            return InvalidAssign()

    return AssignCommand(assignee=assignee, title=title, due_expr=due_expr, priority=priority)


def parse_command(text: str) -> Command:
    """Classify a chat message.

    The first token decides the command (case-insensitive, "@BotName"
    suffix allowed); anything that is not a known command is free text.
    """
    stripped = (text or "").strip()
    if not stripped.startswith("/"):
        return FreeText(text=stripped)

    token, _, args = stripped.partition(" ")
    name = token.split("@", 1)[0].lower()

    if name == "/start":
        return StartCommand()
    if name == "/connect":
        return ConnectCommand()
    if name == "/mytasks":
        return MyTasksCommand()
    if name == "/assign":
        return parse_assign(args)
    return FreeText(text=stripped)


# ---------------------------------------------------------------------------
# Due date resolution
# ---------------------------------------------------------------------------

_RELATIVE_DAYS_RE = re.compile(r"(?:in\s+)?(\d+)\s*days?")


def _at_due_hour(day: date, tz: ZoneInfo) -> datetime:
    return datetime(day.year, day.month, day.day, settings.DEFAULT_DUE_HOUR, tzinfo=tz)


def resolve_due_date(
    expr: str | None,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> datetime:
    """Resolve a due expression to an aware datetime in local time.

    today / tomorrow / "in N days" / "N day(s)" land on DEFAULT_DUE_HOUR.
    ISO dates get DEFAULT_DUE_HOUR too; ISO datetimes keep their time and are
    read as local time when naive. Anything else falls back to tomorrow.
    """
    tz = tz or ZoneInfo(settings.TIMEZONE)
    now = now.astimezone(tz) if now is not None else datetime.now(tz)
    raw = (expr or "").strip()
    text = raw.lower()

    if text == "today":
        return _at_due_hour(now.date(), tz)
    if text == "tomorrow":
        return _at_due_hour(now.date() + timedelta(days=1), tz)

    relative = _RELATIVE_DAYS_RE.fullmatch(text)
    if relative:
        try:
            return _at_due_hour(now.date() + timedelta(days=int(relative.group(1))), tz)
        except OverflowError:
            logger.info("Due offset %r out of range, defaulting to tomorrow", raw)
            return _at_due_hour(now.date() + timedelta(days=1), tz)

    try:
        return _at_due_hour(date.fromisoformat(raw), tz)
    except ValueError:
        pass

    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        logger.info("Unrecognized due expression %r, defaulting to tomorrow", raw)
        return _at_due_hour(now.date() + timedelta(days=1), tz)

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)
