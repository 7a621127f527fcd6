#!/usr/bin/env python3
import asyncio
import os
import signal
import sys
import time

from . import __version__
from .api import ApiServer
from .config_loader import Config
from .connection_manager import ConnectionManager
from .credentials import CredentialStore, CredentialWatcher
from .ingestion import IngestionPipeline
from .live_window import LiveWindow
from .logging_setup import get_logger, setup_logging
from .notifier import create_notifier
from .query_service import QueryService, WindowController
from .sqlite_storage import create_sqlite_storage

VERSION = f"v{__version__}"

logger = get_logger(__name__)


async def main(cfg: Config) -> None:
    logger.info("Database: %s", cfg.db_path)
    storage = await create_sqlite_storage(cfg.db_path)

    window = LiveWindow()
    service = QueryService(storage, page_size=cfg.query.page_size)
    controller = WindowController(service, window, debounce=cfg.debounce_seconds)

    manager = ConnectionManager(
        queue_size=cfg.stream.queue_size,
        connect_timeout=cfg.stream.connect_timeout,
        reconnect_attempts=cfg.stream.reconnect_attempts,
        reconnect_max_delay=cfg.stream.reconnect_max_delay,
    )
    notifier = create_notifier(cfg.notify.backend, cfg.notify.command)
    pipeline = IngestionPipeline(manager.messages, storage, window, notifier)

    watcher = CredentialWatcher(CredentialStore(cfg.credentials_path), manager)
    api = ApiServer(cfg.api.host, cfg.api.port, service, controller, manager, watcher)

    # Permission is requested once, before the stream opens
    await notifier.permission.check()

    await controller.refresh()
    logger.info("Loaded %d of %d messages", len(window.records), window.real_total)

    pipeline.start()
    await api.start_server()
    await watcher.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()
    _first_signal_time = None

    def handle_shutdown(signum=None, frame=None):
        nonlocal _first_signal_time
        logger.info("Signal %s received, stopping ..", signum or 'SIGINT')
        if stop_event.is_set():
            now = time.monotonic()
            # asyncio can double-fire; only a deliberate second signal forces exit
            if _first_signal_time and (now - _first_signal_time) < 5.0:
                return
            logger.warning("Force shutdown - second signal received")
            os._exit(1)
        _first_signal_time = time.monotonic()
        stop_event.set()

    try:
        loop.add_signal_handler(signal.SIGINT, handle_shutdown)
        loop.add_signal_handler(signal.SIGTERM, handle_shutdown)
    except (NotImplementedError, RuntimeError) as e:
        logger.warning("Could not set asyncio signal handlers: %s", e)
        signal.signal(signal.SIGINT, handle_shutdown)
        signal.signal(signal.SIGTERM, handle_shutdown)

    logger.info("pushall %s ready, API at http://%s:%d", VERSION, cfg.api.host, cfg.api.port)

    await stop_event.wait()

    logger.info("Shutting down ..")

    try:
        logger.info("Stopping API server...")
        await asyncio.wait_for(api.stop_server(), timeout=6.0)
    except asyncio.TimeoutError:
        logger.warning("API stop timeout")

    try:
        logger.info("Disconnecting stream...")
        await asyncio.wait_for(manager.close(), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Stream disconnect timeout")

    await controller.stop()
    await pipeline.stop()

    try:
        await asyncio.wait_for(notifier.drain(), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("%d notifications still pending", notifier.pending)

    await storage.close()

    logger.info("Shutdown complete")


def run():
    """Entry point for the pushall CLI."""
    is_dev = os.getenv("PUSHALL_ENV") == "dev"
    setup_logging(verbose=is_dev, simple_format=sys.stdout.isatty())

    if is_dev:
        logger.info("*** DEV environment detected ***")

    cfg = Config.load()
    if cfg.log_file:
        setup_logging(
            verbose=is_dev,
            simple_format=sys.stdout.isatty(),
            log_file=os.path.expanduser(cfg.log_file),
        )

    try:
        asyncio.run(main(cfg))
    except KeyboardInterrupt:
        logger.info("Manually stopped with Ctrl+C")
    except Exception as e:
        logger.exception("Unexpected error: %s", e)


if __name__ == "__main__":
    run()
