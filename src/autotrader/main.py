"""Entry point: build components, start the bot, wait for a shutdown signal."""

import asyncio
import logging
import signal
import sys

import structlog

from autotrader.config import Settings
from autotrader.db.engine import create_db_engine, create_session_factory, create_tables
from autotrader.db.storage import SqlStorage
from autotrader.models.bot import BotConfig
from autotrader.notify.telegram import TelegramNotifier
from autotrader.state_machine import Orchestrator
from autotrader.trade.binance_rest import BinanceRestClient

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=True,
    )


async def main() -> None:
    settings = Settings()
    configure_logging(settings.LOG_LEVEL)

    engine = create_db_engine(
        settings.DATABASE_URL,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_timeout=settings.DB_POOL_TIMEOUT,
    )
    await create_tables(engine)
    storage = SqlStorage(create_session_factory(engine))

    exchange = BinanceRestClient(
        api_key=settings.BINANCE_API_KEY,
        api_secret=settings.BINANCE_API_SECRET,
        base_url=settings.BINANCE_BASE_URL,
        timeout=settings.EXCHANGE_TIMEOUT_SECONDS,
        ping_timeout=settings.PING_TIMEOUT_SECONDS,
    )
    notifier = TelegramNotifier(settings.TELEGRAM_BOT_TOKEN, settings.TELEGRAM_CHAT_ID)
    orchestrator = Orchestrator(settings, exchange, storage, notifier)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        shutdown.set()

    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, _signal_handler)
    else:
        signal.signal(signal.SIGINT, lambda *_: loop.call_soon_threadsafe(_signal_handler))

    try:
        config = await storage.get_config() or BotConfig()
        result = await orchestrator.start(config)
        logger.info("bot_started", usdt_balance=result.usdt_balance, pairs=result.pairs)
        await shutdown.wait()
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("bot_start_failed")
    finally:
        await orchestrator.stop()
        await exchange.close()
        await engine.dispose()
        logger.info("shutdown_complete")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
