"""Protocol handlers."""

import functools
import traceback

from .. import logging as switch_logging


def log_errors(func):
    """Log an addon hook failure and its traceback to the switch log, then re-raise."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            switch_logging.logger.error(f"Security switch {func.__name__} hook failed: {e}")
            switch_logging.logger.error(traceback.format_exc())
            raise
    return wrapper


from .mitmproxy import EvaluateRequestEvent, SecuritySwitchAddon

__all__ = ["EvaluateRequestEvent", "SecuritySwitchAddon", "log_errors"]
