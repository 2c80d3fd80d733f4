"""Logging configuration and decision event logging."""

import json
import logging
import os
from datetime import datetime, timezone

# Configuration from environment
LOG_FILE = os.environ.get("SECSWITCH_LOG_FILE", "/tmp/secswitch.log")
DECISIONS_FILE = os.environ.get("DECISIONS_FILE", "/tmp/secswitch-decisions.jsonl")
MITMPROXY_LOG_FILE = os.environ.get("MITMPROXY_LOG_FILE", "/tmp/mitmproxy.log")
VERBOSE = os.environ.get("VERBOSE", "0") == "1"

# Module-level state (initialized by init_logging)
logger: logging.Logger = logging.getLogger("secswitch")
_decisions_file = None


def init_logging(
    log_file: str | None = None,
    decisions_file: str | None = None,
    verbose: bool | None = None,
) -> logging.Logger:
    """Initialize logging. Returns the main logger."""
    global logger, _decisions_file

    verbose = VERBOSE if verbose is None else verbose

    # Operational logger (human-readable); library modules log below it
    logger = logging.getLogger("secswitch")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    logger.handlers.clear()
    handler = logging.FileHandler(log_file or LOG_FILE)
    handler.setFormatter(logging.Formatter('%(asctime)s %(message)s'))
    logger.addHandler(handler)

    # Decision events file (JSONL format, line-buffered)
    close_logging()
    _decisions_file = open(decisions_file or DECISIONS_FILE, "a", buffering=1)

    # Configure mitmproxy's internal logging (only in verbose mode)
    if verbose:
        mitmproxy_handler = logging.FileHandler(MITMPROXY_LOG_FILE)
        mitmproxy_handler.setFormatter(logging.Formatter('%(asctime)s %(name)s %(levelname)s %(message)s'))
        for mlog_name in ["mitmproxy", "mitmproxy.proxy", "mitmproxy.options"]:
            mlog = logging.getLogger(mlog_name)
            mlog.setLevel(logging.DEBUG)
            mlog.addHandler(mitmproxy_handler)

    return logger


def close_logging():
    """Close logging resources."""
    global _decisions_file
    if _decisions_file:
        _decisions_file.close()
        _decisions_file = None


def log_decision(**kwargs) -> None:
    """Log a decision event as JSONL (timestamp first)."""
    if not _decisions_file:
        return
    event = {"ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds")}
    event.update(kwargs)
    _decisions_file.write(json.dumps(event, separators=(",", ":")) + "\n")
