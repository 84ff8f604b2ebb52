"""TrackBridge Main Application."""

import asyncio
import signal
import sys

from pydantic import ValidationError

from trackbridge import __version__, log
from trackbridge.config.database import get_database
from trackbridge.config.settings import get_config
from trackbridge.core import BridgeClient, SyncScheduler
from trackbridge.exceptions import TrackBridgeError


def _setup_signal_handlers_for_scheduler(scheduler: SyncScheduler) -> None:
    """Install SIGINT/SIGTERM handlers that request scheduler shutdown."""
    loop = asyncio.get_running_loop()

    def _on_signal(sig):
        name = signal.Signals(sig).name if sig else "UNKNOWN"
        log.info(
            f"TrackBridge: Received {name} signal, initiating graceful shutdown..."
        )
        scheduler.request_shutdown()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda s=sig: _on_signal(s))
        except NotImplementedError:
            # Fallback for environments that don't support add_signal_handler
            signal.signal(sig, lambda s, f: _on_signal(s))


async def run() -> int:
    """Main application entry point.

    Builds the bridge client and runs the sync scheduler until shutdown.

    Returns:
        int: Exit code (0 for success, the error's exit code otherwise)
    """
    bridge_client: BridgeClient | None = None
    scheduler: SyncScheduler | None = None

    ret = 0
    try:
        config = get_config()
        log.info(f"TrackBridge v{__version__}")
        log.info(f"TrackBridge: {config}")

        bridge_client = BridgeClient(config, get_database())
        await bridge_client.initialize()

        scheduler = SyncScheduler(bridge_client, config.sync.sync_interval)
        _setup_signal_handlers_for_scheduler(scheduler)

        await scheduler.start()
        await scheduler.wait_for_completion()
    except ValidationError as e:
        log.error(f"TrackBridge: Configuration validation error: {e}")
        return 2
    except TrackBridgeError as e:
        log.error(f"TrackBridge: {e}", exc_info=True)
        return e.exit_code
    except (OSError, PermissionError) as e:
        log.error(f"TrackBridge: File system error: {e}")
        return 1
    except asyncio.CancelledError:
        log.info("TrackBridge: Application cancelled")
        return 0
    except Exception as e:
        log.error(f"TrackBridge: Unexpected application error: {e}", exc_info=True)
        return 1
    finally:
        log.info("TrackBridge: Shutting down application...")
        try:
            if scheduler is not None:
                await scheduler.stop()
            if bridge_client is not None:
                await bridge_client.close()
            log.success("TrackBridge: Application shutdown complete")
        except Exception as e:
            log.error(f"TrackBridge: Error during shutdown: {e}", exc_info=True)
            ret = 1
    return ret


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv (list[str] | None): Command-line arguments (unused).

    Returns:
        int: Exit code (0 for success, non-zero for error)
    """
    try:
        return asyncio.run(run())
    except KeyboardInterrupt:
        log.info("TrackBridge: Application interrupted")
        return 0
    except Exception as e:
        log.error(f"TrackBridge: Fatal error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
