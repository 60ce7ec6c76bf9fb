"""Command that runs the delegation service: HTTP API plus background poller."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
import time
from collections.abc import Sequence
from wsgiref.simple_server import WSGIRequestHandler, make_server

from sqlalchemy.engine import Engine

from .api import DelegationHandler, create_app
from .config import Config, ConfigError, load_config
from .errors import DatabaseError
from .poller import PollerService
from .repository import DelegationRepository, connect
from .service import DelegationService

logger = logging.getLogger(__name__)

MAX_DB_RETRIES = 10
DB_RETRY_DELAY = 1.0
POLLER_SHUTDOWN_TIMEOUT = 5.0
SERVER_SHUTDOWN_TIMEOUT = 10.0


def connect_with_retry(
    config: Config,
    max_retries: int = MAX_DB_RETRIES,
    retry_delay: float = DB_RETRY_DELAY,
) -> Engine:
    """Connect to the configured database, retrying after failures.

    Raises the last DatabaseError once the retries are used up.
    """
    attempt = 0
    while True:
        try:
            engine = connect(config.db_url)
        except DatabaseError as err:
            logger.warning(
                "Database connection attempt failed: %s "
                "(attempt=%d, max_retries=%d, dsn=%s)",
                err, attempt, max_retries, config.masked_db_url(),
            )
            if attempt > max_retries:
                raise
            logger.info(
                "Retrying database connection in %.1fs (attempt=%d)",
                retry_delay, attempt,
            )
            time.sleep(retry_delay)
            attempt += 1
            continue
        logger.info(
            "Database connection established successfully (attempt=%d, ssl_mode=%s)",
            attempt, config.ssl_mode,
        )
        return engine


class _LoggingRequestHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: object) -> None:
        logger.info("%s - %s", self.address_string(), format % args)


def _setup_logging() -> None:
    logging.basicConfig(
        stream=sys.stdout,
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )


def _install_signal_handlers(quit_event: threading.Event) -> None:
    def _handle(signum: int, frame: object) -> None:
        quit_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _handle)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the service until interrupted; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="xtzdelegations",
        description="Serve Tezos delegations kept in sync with the TzKT API.",
    )
    parser.parse_args(argv)
    _setup_logging()

    try:
        config = load_config()
    except ConfigError as err:
        logger.critical("Load config error: %s", err)
        return 1

    try:
        engine = connect_with_retry(config)
    except DatabaseError as err:
        logger.critical("Database connection error after all retries: %s", err)
        return 1

    try:
        repo = DelegationRepository(engine)
        poller = PollerService(repo)
        service = DelegationService(repo)
        app = create_app(DelegationHandler(service))

        try:
            server = make_server(
                "", int(config.server_port), app, handler_class=_LoggingRequestHandler
            )
        except (OSError, ValueError) as err:
            logger.critical("HTTP server error: %s", err)
            poller.client.close()
            return 1

        quit_event = threading.Event()
        _install_signal_handlers(quit_event)

        poller.start()
        server_thread = threading.Thread(
            target=server.serve_forever, name="http-server", daemon=True
        )
        server_thread.start()
        logger.info("Listening on port %s", config.server_port)

        while not quit_event.wait(0.5):
            pass

        logger.info("Shutting down server...")
        logger.info("Shutting down poller")
        poller.stop()
        if poller.wait(POLLER_SHUTDOWN_TIMEOUT):
            logger.info("Poller shut down cleanly")
        else:
            logger.warning(
                "WARNING: Poller did not shut down within 5 seconds, forcing exit"
            )
        poller.client.close()

        stopper = threading.Thread(target=server.shutdown, daemon=True)
        stopper.start()
        stopper.join(SERVER_SHUTDOWN_TIMEOUT)
        if stopper.is_alive():
            logger.critical("HTTP Server forced to shutdown")
            return 1
        server.server_close()
        return 0
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())