"""Request evaluator - decides which transport a request should use.

The functions here are pure: they read a finalized RuleSet and a
RequestInfo and return a verdict. They don't depend on mitmproxy, so
they are easy to unit test and safe to call from concurrent requests.
"""

import logging
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

from .ruleset import RuleSet
from .types import IgnoreHandlers, Mode, PathRule, SecurityType

logger = logging.getLogger(__name__)

# Framework-internal endpoints skipped with IgnoreHandlers.BUILT_IN
BUILT_IN_HANDLERS = frozenset({"trace.axd", "webresource.axd"})

# Handler-style suffixes skipped with IgnoreHandlers.STANDARD_EXTENSIONS
STANDARD_HANDLER_SUFFIXES = (".axd", ".ashx", ".asmx/js", ".asmx/jsdebug")


@dataclass
class RequestInfo:
    """What the evaluator needs to know about a request.

    Attributes:
        path: URL path as received, possibly percent-encoded, without query
        is_local: True if the client address is the server's own address
        application_path: URL path of the application root
    """

    path: str
    is_local: bool = False
    application_path: str = "/"

    @classmethod
    def from_url(cls, url: str, is_local: bool = False, application_path: str = "/") -> "RequestInfo":
        """Create a RequestInfo from a full URL (scheme, host and query are dropped)."""
        return cls(
            path=urlsplit(url).path or "/",
            is_local=is_local,
            application_path=application_path,
        )


@dataclass
class Decision:
    """Result of evaluating a request.

    Attributes:
        verdict: Secure, Insecure or Ignore
        reason: Human-readable explanation of the verdict
        matched_rule: The file or directory rule that decided it, if any
    """

    verdict: SecurityType
    reason: str
    matched_rule: PathRule | None = None

    @property
    def secure(self) -> bool:
        return self.verdict == SecurityType.SECURE

    @property
    def insecure(self) -> bool:
        return self.verdict == SecurityType.INSECURE

    @property
    def ignored(self) -> bool:
        return self.verdict == SecurityType.IGNORE


def request_matches_mode(mode: Mode, is_local: bool) -> bool:
    """Check whether a request must be evaluated under the given mode."""
    if mode == Mode.ON:
        return True
    if mode == Mode.REMOTE_ONLY:
        return not is_local
    if mode == Mode.LOCAL_ONLY:
        return is_local
    return False


def is_built_in_handler_request(path: str) -> bool:
    """Check if the last segment of a URL path is a built-in handler."""
    file_name = path.rsplit("/", 1)[-1]
    return file_name.lower() in BUILT_IN_HANDLERS


def is_standard_handler_request(path: str) -> bool:
    """Check if a URL path ends with a handler-style suffix (.axd, .ashx, ...)."""
    return path.lower().endswith(STANDARD_HANDLER_SUFFIXES)


def relative_file_path(path: str, application_path: str = "/") -> str:
    """Get the request path relative to the application root.

    The path is percent-decoded, the application root is removed, and the
    result is lower-cased without its leading "/".

    Example:
        >>> relative_file_path("/shop/Admin/Login%20Page.aspx", "/shop")
        'admin/login page.aspx'
    """
    decoded = unquote(path)
    root = (application_path or "/").rstrip("/")
    if root and decoded.lower().startswith(root.lower()):
        rest = decoded[len(root):]
        if not rest or rest.startswith("/"):
            decoded = rest
    decoded = decoded.lower()
    if decoded.startswith("/"):
        decoded = decoded[1:]
    return decoded


def relative_directory(file_path: str) -> str:
    """Drop the last segment of a relative file path ("" if there is none)."""
    i = file_path.rfind("/")
    return file_path[:i] if i >= 0 else ""


def evaluate_request(
    request: RequestInfo,
    rule_set: RuleSet,
    force_evaluation: bool = False,
) -> Decision:
    """Evaluate a request against a rule set.

    Steps, in order:
    1. Mode gate (skipped when force_evaluation is set)
    2. Handler exclusion per rule_set.ignore_handlers
    3. Exact file rule
    4. Deepest matching directory rule, else Insecure

    Never raises for string input: a path no rule covers is Insecure.
    """
    if not (force_evaluation or request_matches_mode(rule_set.mode, request.is_local)):
        origin = "local" if request.is_local else "remote"
        logger.debug("Evaluation of request skipped (mode %s)", rule_set.mode.value)
        return Decision(
            verdict=SecurityType.IGNORE,
            reason=f"Mode {rule_set.mode.value} skips {origin} requests",
        )

    logger.debug("Evaluating request %s", request.path)

    if rule_set.ignore_handlers == IgnoreHandlers.BUILT_IN:
        if is_built_in_handler_request(request.path):
            return Decision(
                verdict=SecurityType.IGNORE,
                reason=f"Built-in handler {request.path}",
            )
    elif rule_set.ignore_handlers == IgnoreHandlers.STANDARD_EXTENSIONS:
        if is_standard_handler_request(request.path):
            return Decision(
                verdict=SecurityType.IGNORE,
                reason=f"Handler request {request.path}",
            )

    file_path = relative_file_path(request.path, request.application_path)

    rule = rule_set.find_file_rule(file_path)
    if rule is not None:
        logger.debug("Request matches file: %s - %s", rule.security.value, rule.path)
        return Decision(
            verdict=rule.security,
            reason=f"Matched file rule '{rule.path}'",
            matched_rule=rule,
        )

    directory = relative_directory(file_path)
    rule = rule_set.find_best_directory_rule(directory)
    if rule is not None:
        logger.debug("Request matches directory: %s - %s", rule.security.value, rule.path)
        return Decision(
            verdict=rule.security,
            reason=f"Matched directory rule '{rule.path}'",
            matched_rule=rule,
        )

    logger.debug("Request does not match anything")
    return Decision(
        verdict=SecurityType.INSECURE,
        reason=f"No rule matches '{file_path}'",
    )


def evaluate(
    request: RequestInfo,
    rule_set: RuleSet,
    force_evaluation: bool = False,
) -> SecurityType:
    """Evaluate a request and return only the verdict."""
    return evaluate_request(request, rule_set, force_evaluation).verdict
