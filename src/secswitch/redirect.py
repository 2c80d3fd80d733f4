"""Redirect planning - turns a verdict into a redirect target.

Kept separate from the evaluator: the evaluator only says which transport
a path needs, this module works out where to send the client given the
URL it actually requested and the rule set's redirect settings.
"""

import html
from dataclasses import dataclass
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .policy import RuleSet, SecurityType, WarningBypassMode

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass
class Redirect:
    """A planned redirect.

    Attributes:
        location: Absolute URL to send the client to
        secure: True when switching to https, False when switching to http
        bypass_warning: Use a refresh page instead of a 3xx so the browser
            doesn't warn about leaving a secure page
    """

    location: str
    secure: bool
    bypass_warning: bool = False


def _switch_scheme(url: str, scheme: str) -> str:
    """Swap the scheme of a URL, dropping the old scheme's default port."""
    parts = urlsplit(url)
    netloc = parts.netloc
    if parts.port is not None and parts.port == DEFAULT_PORTS.get(parts.scheme.lower()):
        netloc = netloc.rsplit(":", 1)[0]
    return urlunsplit((scheme, netloc, parts.path, parts.query, parts.fragment))


def _app_relative_path(path: str, application_path: str) -> str:
    """Strip the application root from a URL path, keeping its case and escaping."""
    root = (application_path or "/").rstrip("/")
    if root and path.lower().startswith(root.lower()):
        rest = path[len(root):]
        if not rest or rest.startswith("/"):
            path = rest
    return path.lstrip("/")


def _build_url(url: str, secure: bool, rule_set: RuleSet, application_path: str) -> str:
    uri = rule_set.secure_uri if secure else rule_set.insecure_uri
    if not uri:
        return _switch_scheme(url, "https" if secure else "http")
    if not rule_set.maintain_path:
        return uri

    parts = urlsplit(url)
    target = uri.rstrip("/") + "/" + _app_relative_path(parts.path, application_path)
    if parts.query:
        target += "?" + parts.query
    return target


def build_secure_url(url: str, rule_set: RuleSet, application_path: str = "/") -> str:
    """Build the https URL for a request.

    Without a configured encryptedUri this is the same URL over https.
    With one, it is that URI, followed by the request path below the
    application root and the query string when maintain_path is set.
    """
    return _build_url(url, True, rule_set, application_path)


def build_insecure_url(url: str, rule_set: RuleSet, application_path: str = "/") -> str:
    """Build the http URL for a request (see build_secure_url)."""
    return _build_url(url, False, rule_set, application_path)


def _has_param(query: str, name: str) -> bool:
    name = name.lower()
    return any(key.lower() == name for key, _ in parse_qsl(query, keep_blank_values=True))


def should_bypass_warning(rule_set: RuleSet, query: str) -> bool:
    """Decide whether to bypass the secure -> insecure browser warning."""
    mode = rule_set.warning_bypass_mode
    if mode == WarningBypassMode.ALWAYS_BYPASS:
        return True
    if mode == WarningBypassMode.NEVER_BYPASS:
        return False
    return bool(rule_set.bypass_query_param_name) and _has_param(
        query, rule_set.bypass_query_param_name
    )


def strip_query_param(url: str, name: str) -> str:
    """Remove every occurrence of a query parameter (case-insensitive) from a URL."""
    parts = urlsplit(url)
    if not name or not _has_param(parts.query, name):
        return url
    name = name.lower()
    kept = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key.lower() != name
    ]
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(kept), parts.fragment))


def plan_redirect(
    url: str,
    verdict: SecurityType,
    rule_set: RuleSet,
    application_path: str = "/",
) -> Redirect | None:
    """Plan the redirect for a request, or None if it stays where it is.

    Secure requests arriving over http go to the secure URL, Insecure
    requests arriving over https go to the insecure URL. Ignore never
    redirects.
    """
    scheme = urlsplit(url).scheme.lower()

    if verdict == SecurityType.SECURE and scheme != "https":
        location = build_secure_url(url, rule_set, application_path)
        redirect = Redirect(location=location, secure=True)
    elif verdict == SecurityType.INSECURE and scheme == "https":
        bypass = should_bypass_warning(rule_set, urlsplit(url).query)
        source = strip_query_param(url, rule_set.bypass_query_param_name)
        location = build_insecure_url(source, rule_set, application_path)
        redirect = Redirect(location=location, secure=False, bypass_warning=bypass)
    else:
        return None

    # A configured URI pointing back at the same URL would loop
    if redirect.location == url:
        return None
    return redirect


def bypass_page(location: str) -> str:
    """HTML page that sends the client on to location via a meta refresh."""
    escaped = html.escape(location, quote=True)
    return (
        "<!DOCTYPE html>\n"
        "<html><head>"
        f'<meta http-equiv="refresh" content="0;url={escaped}">'
        "<title>Redirecting</title></head>"
        f'<body><a href="{escaped}">Continue</a></body></html>\n'
    )
