import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Sequence

from aiogram import Bot, Dispatcher
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from bot import router
from config import settings
from services import AdminAlertHandler, JitterScheduler, Monitor, NotificationDispatcher
from services.gateway import create_gateway, create_heartbeat_gateway
from services.heartbeat import Heartbeat
from services.renderer import create_renderer
from services.runtime import configure_dispatcher, configure_scheduler
from services.storage import AppSettingsRepository, CheckLogRepository, TargetRepository

# ensure logs are recorded both to stdout and to a rotating file
def configure_logging() -> None:
    log_dir = Path(os.getenv("LOG_DIR", "logs"))
    if not log_dir.is_absolute():
        log_dir = Path.cwd() / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = log_dir / "booking-watch.log"

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        handlers=[
            logging.StreamHandler(),
            RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
                encoding="utf-8",
            ),
        ],
        force=True,
    )
    # apscheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


configure_logging()
logger = logging.getLogger("booking_watch")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Watch booking pages and push when they open.")
    parser.add_argument(
        "--test",
        action="store_true",
        help="send a test notification and exit",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # not available on Windows event loops; KeyboardInterrupt still works
            pass


async def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    settings.validate()

    bot = None
    if settings.bot_enabled:
        bot = Bot(
            token=settings.BOT_TOKEN,
            default=DefaultBotProperties(parse_mode=ParseMode.HTML),
        )
        if settings.ADMIN_CHAT_IDS:
            logging.getLogger().addHandler(
                AdminAlertHandler(bot, settings.ADMIN_CHAT_IDS, loop=asyncio.get_running_loop())
            )

    targets = TargetRepository(settings.DB_PATH)
    check_logs = CheckLogRepository(settings.DB_PATH)
    app_settings = AppSettingsRepository(settings.DB_PATH, settings.CHECK_INTERVAL_SECONDS)
    targets.seed(settings.MONITOR_TARGETS)

    gateway = create_gateway(settings, bot)
    dispatcher = NotificationDispatcher(gateway)
    configure_dispatcher(dispatcher)

    if args.test:
        logger.info("Running in test mode...")
        result = await dispatcher.send_test()
        await gateway.close()
        if bot is not None:
            await bot.session.close()
        if result.ok:
            logger.info("Test notification sent successfully!")
            return 0
        logger.error("Test notification failed: %s", result.reason)
        return 1

    renderer = create_renderer(settings)
    heartbeat_gateway = create_heartbeat_gateway(settings)
    heartbeat = (
        Heartbeat(
            heartbeat_gateway,
            app_settings,
            hour=settings.HEARTBEAT_HOUR,
            utc_offset_hours=settings.HEARTBEAT_UTC_OFFSET_HOURS,
        )
        if heartbeat_gateway is not None
        else None
    )
    monitor = Monitor(
        renderer,
        dispatcher,
        targets,
        check_logs,
        render_timeout_ms=settings.RENDER_TIMEOUT_MS,
        heartbeat=heartbeat,
    )

    interval = app_settings.get_check_interval()
    scheduler = JitterScheduler(interval, settings.JITTER_RATIO)
    configure_scheduler(scheduler)

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    polling_task: asyncio.Task | None = None

    try:
        logger.info(
            "Booking watch started. Checking every ~%ss (jitter %.0f%%) for %s target(s)",
            interval,
            settings.JITTER_RATIO * 100,
            len(targets.get_enabled_targets()),
        )
        # first check runs before the scheduler so the two never overlap
        await monitor.check_targets()
        scheduler.start(monitor.check_targets)

        if bot is not None:
            bot_dispatcher = Dispatcher()
            bot_dispatcher.include_router(router)
            polling_task = asyncio.create_task(
                bot_dispatcher.start_polling(bot, handle_signals=False)
            )

        await stop_event.wait()
        logger.info("Shutdown requested")
    finally:
        configure_scheduler(None)
        await scheduler.shutdown()
        if polling_task is not None:
            polling_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await polling_task
        await renderer.close()
        await gateway.close()
        if heartbeat_gateway is not None:
            await heartbeat_gateway.close()
        if bot is not None:
            await bot.session.close()
        logger.info("Shutdown complete")

    return 0


def run() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        sys.exit(1)
    except Exception:
        logger.exception("Fatal error")
        sys.exit(1)


if __name__ == "__main__":
    run()
