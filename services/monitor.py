"""Monitoring service: one pass over every enabled target per tick."""
from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Optional

from models import CheckResult, Status, Target
from services.classifier import classify
from services.heartbeat import Heartbeat
from services.notifier import NotificationDispatcher
from services.renderer import Renderer, RenderError
from services.storage import CheckLogRepository, TargetRepository

logger = logging.getLogger(__name__)


class Monitor:
    """Render, classify, log, notify and persist, target by target."""

    def __init__(
        self,
        renderer: Renderer,
        dispatcher: NotificationDispatcher,
        targets: TargetRepository,
        check_logs: CheckLogRepository,
        render_timeout_ms: int = 30000,
        heartbeat: Optional[Heartbeat] = None,
    ) -> None:
        self.renderer = renderer
        self.dispatcher = dispatcher
        self.targets = targets
        self.check_logs = check_logs
        self.render_timeout_ms = render_timeout_ms
        self.heartbeat = heartbeat

    async def check_targets(self) -> None:
        """Check all enabled targets; a failing target never stops the others."""
        if self.heartbeat is not None:
            try:
                await self.heartbeat.maybe_send()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Heartbeat check failed")

        targets = self.targets.get_enabled_targets()
        if not targets:
            logger.warning("No enabled targets found")
            return

        logger.info("Starting monitoring check…")
        total = 0
        open_count = 0
        failed = 0

        for target in targets:
            total += 1
            try:
                result = await self.check_target(target)
            except asyncio.CancelledError:
                logger.info("Monitoring task cancelled for %s (shutdown)", target.name)
                raise
            except Exception:
                failed += 1
                logger.exception("Error checking target %s", target.name)
                continue

            if result.status is Status.OPEN:
                open_count += 1
            elif result.status is Status.UNKNOWN:
                failed += 1

        logger.info(
            "Monitoring check completed: %d total, %d open, %d failed",
            total, open_count, failed
        )

    async def check_target(self, target: Target) -> CheckResult:
        logger.info("Checking target: %s", target.name)
        checked_at = datetime.now(UTC)
        result = await self._observe(target)

        self._record(target, checked_at, result)

        if result.final_url and result.final_url != target.url_final_last:
            self.targets.update_target(target.id, url_final_last=result.final_url)
            target.url_final_last = result.final_url

        previous = self.targets.get_state(target.id)
        old_status = previous.status if previous else Status.UNKNOWN

        # decide against the persisted status before overwriting it
        await self.dispatcher.dispatch(target, old_status, result.status)
        self.targets.set_state(target.id, result.status)

        logger.info(
            "Check complete: %s -> %s (evidence: %s)",
            target.name,
            result.status,
            ", ".join(result.evidence) or "none",
        )
        return result

    async def _observe(self, target: Target) -> CheckResult:
        try:
            snapshot = await self.renderer.render(target.url_input, self.render_timeout_ms)
        except RenderError as exc:
            logger.warning("Could not render %s: %s", target.url_input, exc)
            return CheckResult(
                status=Status.UNKNOWN,
                final_url=exc.final_url or target.url_final_last,
                error=str(exc),
            )

        status, evidence = classify(snapshot, target.policy)
        return CheckResult(status=status, evidence=tuple(evidence), final_url=snapshot.final_url)

    def _record(self, target: Target, checked_at: datetime, result: CheckResult) -> None:
        try:
            self.check_logs.append(
                target.id,
                checked_at,
                result.status,
                result.evidence,
                result.error,
            )
        except Exception:
            logger.exception("Failed to record check log for %s", target.name)


__all__ = ["Monitor"]
