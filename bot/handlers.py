"""Telegram command handlers for the admin bot."""
from __future__ import annotations

import html
import json
import logging
from datetime import datetime
from typing import Sequence
from urllib.parse import urlparse

from aiogram import Router
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import Message

from bot.filters import IsAdmin
from config import settings
from models import LogEntry, Status, Target, TransitionState
from services.classifier import DEFAULT_POLICY, validate_policy
from services.runtime import get_dispatcher, update_check_interval
from services.storage import AppSettingsRepository, CheckLogRepository, TargetRepository

logger = logging.getLogger(__name__)
router = Router()

DEFAULT_LOG_LIMIT = 10
MAX_LOG_LIMIT = 30

STATUS_ICONS = {
    Status.OPEN: "🟢",
    Status.CLOSED: "🔴",
    Status.UNKNOWN: "⚪️",
}


def _target_repository() -> TargetRepository:
    return TargetRepository(settings.DB_PATH)


def _log_repository() -> CheckLogRepository:
    return CheckLogRepository(settings.DB_PATH)


def _app_settings() -> AppSettingsRepository:
    return AppSettingsRepository(settings.DB_PATH, settings.CHECK_INTERVAL_SECONDS)


def _format_seconds(value: int) -> str:
    minutes, seconds = divmod(value, 60)
    if not minutes:
        return f"{seconds}s"
    if not seconds:
        return f"{minutes}m"
    return f"{minutes}m {seconds}s"


def _format_timestamp(value: datetime | None) -> str:
    if value is None:
        return "—"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def _short_id(target_id: str) -> str:
    return target_id[:8]


def _resolve_target(repository: TargetRepository, token: str) -> Target:
    """Find a target by full id or by a unique id prefix."""
    token = token.strip()
    if not token:
        raise ValueError("Target id is required")

    target = repository.get_target(token)
    if target is not None:
        return target

    matches = [item for item in repository.list_targets() if item.id.startswith(token)]
    if not matches:
        raise ValueError(f"No target with id {token}")
    if len(matches) > 1:
        raise ValueError(f"Id prefix {token} is ambiguous")
    return matches[0]


def _parse_add_payload(payload: str) -> tuple[str, str, str | None]:
    parts = payload.split(maxsplit=2)
    if not parts:
        raise ValueError("Usage: /add <policy> <url> [name]")

    if parts[0].startswith(("http://", "https://")):
        policy = DEFAULT_POLICY
        url = parts[0]
        name = " ".join(parts[1:]) or None
    else:
        if len(parts) < 2:
            raise ValueError("Usage: /add <policy> <url> [name]")
        policy = validate_policy(parts[0])
        url = parts[1]
        name = parts[2] if len(parts) > 2 else None

    if not url.startswith(("http://", "https://")):
        raise ValueError("URL must start with http:// or https://")
    return policy, url, name.strip() if name and name.strip() else None


def _default_name(url: str) -> str:
    parsed = urlparse(url)
    segment = parsed.path.rstrip("/").split("/")[-1]
    return segment or parsed.netloc or url


def _format_target_line(target: Target, state: TransitionState | None) -> str:
    status = state.status if state else Status.UNKNOWN
    paused = "" if target.enabled else " ⏸"
    lines = [
        f"{STATUS_ICONS[status]} <b>{html.escape(target.name)}</b>{paused} "
        f"<code>{_short_id(target.id)}</code> [{html.escape(target.policy)}]",
        f"    {html.escape(target.url_input)}",
    ]
    if state is not None:
        lines.append(
            f"    changed: {_format_timestamp(state.last_changed_at)}, "
            f"last open: {_format_timestamp(state.last_open_at)}"
        )
    return "\n".join(lines)


def _format_log_entry(entry: LogEntry) -> str:
    try:
        evidence = json.loads(entry.evidence)
    except json.JSONDecodeError:
        evidence = []
    line = (
        f"{STATUS_ICONS[entry.status]} {_format_timestamp(entry.checked_at)} "
        f"{entry.status.value} ({', '.join(evidence) or 'none'})"
    )
    if entry.error:
        line += f"\n    ⚠️ {html.escape(entry.error)}"
    return line


def _compose_overview(targets: Sequence[Target], states: dict[str, TransitionState | None], interval: int) -> str:
    active = sum(1 for target in targets if target.enabled)
    header = (
        "📊 <b>Booking watch</b>\n\n"
        f"⏱ Interval: ~{_format_seconds(interval)}\n"
        f"🔗 Targets: {len(targets)} (active: {active})\n\n"
    )
    if not targets:
        return header + "No targets yet. Use /add &lt;policy&gt; &lt;url&gt; [name]."
    return header + "\n\n".join(_format_target_line(target, states.get(target.id)) for target in targets)


@router.message(CommandStart())
async def cmd_start(message: Message) -> None:
    user_id = message.from_user.id if message.from_user else None
    logger.info("User %s started the bot", user_id)

    if user_id in settings.ADMIN_CHAT_IDS:
        await message.answer(
            "✅ <b>Booking watch is running</b>\n\n"
            "/targets - Target status\n"
            "/logs &lt;id&gt; [n] - Recent checks\n"
            "/interval [seconds] - Show or change the check interval\n"
            "/add &lt;policy&gt; &lt;url&gt; [name] - Add a target\n"
            "/toggle &lt;id&gt; - Pause or resume a target\n"
            "/remove &lt;id&gt; - Remove a target\n"
            "/test - Send a test notification",
            parse_mode="HTML",
        )
    else:
        await message.answer("👋 This bot is for administrators only.")


@router.message(Command("targets", "status"), IsAdmin())
async def cmd_targets(message: Message) -> None:
    repository = _target_repository()
    targets = repository.list_targets()
    states = {target.id: repository.get_state(target.id) for target in targets}
    interval = _app_settings().get_check_interval()
    await message.answer(_compose_overview(targets, states, interval), parse_mode="HTML")


@router.message(Command("logs"), IsAdmin())
async def cmd_logs(message: Message, command: CommandObject) -> None:
    parts = (command.args or "").split()
    try:
        if not parts:
            raise ValueError("Usage: /logs <id> [n]")
        target = _resolve_target(_target_repository(), parts[0])
        limit = int(parts[1]) if len(parts) > 1 else DEFAULT_LOG_LIMIT
    except ValueError as exc:
        await message.answer(f"❌ {html.escape(str(exc))}", parse_mode="HTML")
        return

    limit = max(1, min(limit, MAX_LOG_LIMIT))
    entries = _log_repository().recent(target.id, limit)
    if not entries:
        await message.answer(f"No checks recorded for <b>{html.escape(target.name)}</b> yet.", parse_mode="HTML")
        return

    body = "\n".join(_format_log_entry(entry) for entry in entries)
    await message.answer(f"🗒 <b>{html.escape(target.name)}</b>\n\n{body}", parse_mode="HTML")


@router.message(Command("interval"), IsAdmin())
async def cmd_interval(message: Message, command: CommandObject) -> None:
    app_settings = _app_settings()
    if not command.args:
        await message.answer(f"⏱ Current interval: ~{_format_seconds(app_settings.get_check_interval())}")
        return

    try:
        seconds = app_settings.set_check_interval(int(command.args.strip()))
    except ValueError as exc:
        await message.answer(f"❌ {html.escape(str(exc))}", parse_mode="HTML")
        return

    applied = update_check_interval(seconds)
    logger.info("Check interval changed to %ss (applied=%s)", seconds, applied)
    suffix = "" if applied else " It takes effect on the next start."
    await message.answer(f"✅ Interval set to ~{_format_seconds(seconds)}.{suffix}")


@router.message(Command("add"), IsAdmin())
async def cmd_add(message: Message, command: CommandObject) -> None:
    repository = _target_repository()
    try:
        policy, url, name = _parse_add_payload(command.args or "")
    except ValueError as exc:
        await message.answer(f"❌ {html.escape(str(exc))}", parse_mode="HTML")
        return

    if repository.find_by_url(url) is not None:
        await message.answer("❌ This URL is already monitored.")
        return

    target_id = repository.add_target(name or _default_name(url), url, policy)
    logger.info("Added target %s (%s) via bot", url, target_id)
    await message.answer(
        f"✅ Added <code>{_short_id(target_id)}</code> with policy {html.escape(policy)}.",
        parse_mode="HTML",
    )


@router.message(Command("toggle"), IsAdmin())
async def cmd_toggle(message: Message, command: CommandObject) -> None:
    repository = _target_repository()
    try:
        target = _resolve_target(repository, command.args or "")
    except ValueError as exc:
        await message.answer(f"❌ {html.escape(str(exc))}", parse_mode="HTML")
        return

    repository.update_target(target.id, enabled=not target.enabled)
    state_text = "paused" if target.enabled else "resumed"
    await message.answer(f"✅ <b>{html.escape(target.name)}</b> {state_text}.", parse_mode="HTML")


@router.message(Command("remove"), IsAdmin())
async def cmd_remove(message: Message, command: CommandObject) -> None:
    repository = _target_repository()
    try:
        target = _resolve_target(repository, command.args or "")
    except ValueError as exc:
        await message.answer(f"❌ {html.escape(str(exc))}", parse_mode="HTML")
        return

    repository.delete_target(target.id)
    logger.info("Removed target %s via bot", target.id)
    await message.answer(f"🗑 Removed <b>{html.escape(target.name)}</b>.", parse_mode="HTML")


@router.message(Command("test"), IsAdmin())
async def cmd_test(message: Message) -> None:
    dispatcher = get_dispatcher()
    if dispatcher is None:
        await message.answer("❌ Notifications are not configured.")
        return

    result = await dispatcher.send_test()
    if result.ok:
        await message.answer("✅ Test notification sent.")
    else:
        await message.answer(f"❌ Test notification failed: {html.escape(result.reason or 'unknown')}", parse_mode="HTML")
