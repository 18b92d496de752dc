"""Application entry point for slackscope."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from pydantic import ValidationError

from slackscope.application.services.conversation_engine import ConversationEngine
from slackscope.application.services.metadata_cache import MetadataCache
from slackscope.config import (
    ConfigError,
    ConfigFileNotFoundError,
    load_config,
)
from slackscope.domain.errors import SlackscopeError
from slackscope.infrastructure import JsonSnapshotStore, RateGate
from slackscope.infrastructure.logging import get_logger, setup_logging
from slackscope.infrastructure.slack import AuthRouter
from slackscope.presentation.http.server import HTTPServer

# Shutdown timeout in seconds
SHUTDOWN_TIMEOUT = 30


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Command line arguments. If None, uses sys.argv.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="slackscope - Cached Slack conversation query service"
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to configuration file (default: config.yaml)",
    )
    return parser.parse_args(args)


async def main_async(
    config_path: Path,
    shutdown_timeout: float = SHUTDOWN_TIMEOUT,
) -> int:
    """Async main function.

    Args:
        config_path: Path to configuration file.
        shutdown_timeout: Maximum time in seconds to wait for graceful shutdown.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    # 1. Load configuration
    config = load_config(config_path)

    # 2. Initialize logging
    setup_logging(config.logging)
    logger = get_logger(__name__)
    logger.info("Starting slackscope", config_path=str(config_path))

    # 3. Connect to the workspace
    rate_gate = RateGate(config.rate_limit)
    router = AuthRouter.from_config(config.slack, rate_gate)
    try:
        identity = await router.connect()
    except SlackscopeError as e:
        logger.error("Workspace handshake failed", kind=e.kind, error=e.message)
        await router.close()
        return 1
    logger.info(
        "Authenticated",
        team=identity.team,
        user=identity.user,
        impersonated=router.is_impersonated,
    )

    # 4. Initialize components
    store = JsonSnapshotStore.from_config(config.cache, router.is_impersonated)
    cache = MetadataCache(router, store)
    engine = ConversationEngine(router, cache)
    http_server = HTTPServer(
        config=config.server,
        query_config=config.query,
        engine=engine,
        cache=cache,
        logger=get_logger("http_server"),
    )

    # 5. Setup shutdown handling
    shutdown_event = asyncio.Event()

    def signal_handler(sig: signal.Signals) -> None:
        logger.info("Received signal, initiating shutdown", signal=sig.name)
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        # 6. Load snapshots and start background refreshes
        await cache.start()

        # 7. Start HTTP server
        await http_server.start()
        logger.info("slackscope started successfully")

        # 8. Serve until shutdown is signaled
        await shutdown_event.wait()

    except asyncio.CancelledError:
        logger.info("Main loop cancelled")

    finally:
        # 9. Shutdown
        logger.info("Shutting down")
        try:
            await asyncio.wait_for(
                _shutdown(http_server, cache, router), timeout=shutdown_timeout
            )
            logger.info("slackscope stopped")
        except TimeoutError:
            logger.warning(
                "Shutdown timed out, forcing termination",
                timeout_seconds=shutdown_timeout,
            )

    return 0


async def _shutdown(
    http_server: HTTPServer, cache: MetadataCache, router: AuthRouter
) -> None:
    """Stop serving, then cancel refreshes, then release the upstream session."""
    await http_server.stop()
    await cache.close()
    await router.close()


def main() -> None:
    """Main entry point."""
    args = parse_args()
    config_path = args.config

    try:
        exit_code = asyncio.run(main_async(config_path))
        sys.exit(exit_code)
    except ConfigFileNotFoundError:
        print(f"Error: {config_path} not found", file=sys.stderr)
        sys.exit(1)
    except ConfigError as e:
        print(f"Error: Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValidationError as e:
        print(f"Error: Configuration validation error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
