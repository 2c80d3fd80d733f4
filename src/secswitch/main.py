#!/usr/bin/env python3
"""
Security switch proxy: mitmproxy with the SecuritySwitchAddon.

Environment:
- SECSWITCH_CONFIG: policy file (.policy text or .yaml), required
- SECSWITCH_LISTEN_PORT: proxy port (default 8080)
- SECSWITCH_PROXY_MODE: mitmproxy mode (default "regular",
  e.g. "reverse:http://127.0.0.1:8000")
- SECSWITCH_APP_PATH: URL path of the application root (default "/")

Signals: SIGHUP reloads the policy, SIGTERM/SIGINT stop the proxy.
"""

import asyncio
import os
import signal
import sys
import traceback

from mitmproxy.options import Options
from mitmproxy.tools.dump import DumpMaster

from . import logging as switch_logging
from .handlers import SecuritySwitchAddon
from .policy import ConfigurationError, RuleSetStore

CONFIG_FILE = os.environ.get("SECSWITCH_CONFIG")
LISTEN_PORT = int(os.environ.get("SECSWITCH_LISTEN_PORT", "8080"))
PROXY_MODE = os.environ.get("SECSWITCH_PROXY_MODE", "regular")
APP_PATH = os.environ.get("SECSWITCH_APP_PATH", "/")

# Graceful shutdown timeout (seconds)
SHUTDOWN_TIMEOUT = 3.0


def reload_policy(store: RuleSetStore) -> bool:
    """Reload the policy, keeping the current rule set on failure."""
    logger = switch_logging.logger
    try:
        store.reload()
        return True
    except (OSError, ConfigurationError) as e:
        logger.error(f"Policy reload failed, keeping generation {store.generation}: {e}")
        return False


async def run_mitmproxy(store: RuleSetStore):
    """Run mitmproxy with our addon."""
    logger = switch_logging.logger
    logger.info("Initializing mitmproxy...")
    master = None
    try:
        opts = Options(
            mode=[PROXY_MODE],
            listen_port=LISTEN_PORT,
            showhost=True,
        )
        master = DumpMaster(opts, with_termlog=False, with_dumper=False)
        master.addons.add(SecuritySwitchAddon(store, application_path=APP_PATH))
        logger.info(f"Starting mitmproxy on port {LISTEN_PORT} ({PROXY_MODE})...")
        await master.run()
    except asyncio.CancelledError:
        logger.info("mitmproxy cancelled")
        raise  # Must re-raise for proper task cancellation
    except Exception as e:
        logger.error(f"mitmproxy failed: {e}")
        logger.error(traceback.format_exc())
        raise
    finally:
        if master:
            logger.info("Shutting down mitmproxy master...")
            master.shutdown()


async def shutdown_task(task: asyncio.Task, timeout: float = SHUTDOWN_TIMEOUT):
    """Cancel a task and wait for it to finish with timeout."""
    logger = switch_logging.logger
    if not task.done():
        logger.info(f"Cancelling task: {task.get_name()}")
        task.cancel()
    try:
        await asyncio.wait_for(asyncio.gather(task, return_exceptions=True), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Shutdown timed out after {timeout}s")


async def main(store: RuleSetStore):
    """Run the proxy until a stop signal or a mitmproxy failure."""
    logger = switch_logging.logger

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def stop_handler(signum):
        logger.info(f"Received signal {signal.Signals(signum).name} ({signum})")
        stop_event.set()

    def reload_handler():
        logger.info("Received SIGHUP, reloading policy")
        reload_policy(store)

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: stop_handler(s))
    loop.add_signal_handler(signal.SIGHUP, reload_handler)

    mitmproxy_task = asyncio.create_task(run_mitmproxy(store), name="mitmproxy")
    stop_task = asyncio.create_task(stop_event.wait(), name="stop_signal")
    try:
        done, _ = await asyncio.wait(
            [stop_task, mitmproxy_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        if mitmproxy_task in done and mitmproxy_task.exception():
            logger.error(f"Task mitmproxy failed: {mitmproxy_task.exception()}")
    finally:
        logger.info("Shutting down...")
        stop_task.cancel()
        await shutdown_task(mitmproxy_task)
        logger.info("Shutdown complete")


def cli():
    """Entry point: load the policy and run the proxy."""
    logger = switch_logging.init_logging()

    if not CONFIG_FILE:
        logger.error("SECSWITCH_CONFIG is not set")
        print("Error: SECSWITCH_CONFIG is not set", file=sys.stderr)
        sys.exit(2)

    logger.info("=" * 50)
    logger.info("Security Switch Starting")
    logger.info(f"PID: {os.getpid()}")
    logger.info("=" * 50)

    store = RuleSetStore(source=CONFIG_FILE)
    try:
        store.reload()
    except (OSError, ConfigurationError) as e:
        logger.error(f"Invalid policy {CONFIG_FILE}: {e}")
        print(f"Error: {CONFIG_FILE}: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(main(store))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        switch_logging.close_logging()


if __name__ == "__main__":
    cli()
