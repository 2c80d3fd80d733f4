"""Mitmproxy addon that switches requests between http and https."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from mitmproxy import http

from .. import logging as switch_logging
from ..policy import RequestInfo, RuleSet, RuleSetStore, evaluate_request
from ..redirect import bypass_page, plan_redirect
from ..utils import is_local_request
from . import log_errors


@dataclass
class EvaluateRequestEvent:
    """Passed to before-evaluate callbacks.

    Set `cancel` to True to skip evaluation; the request then goes
    through untouched.
    """

    flow: Any
    rule_set: RuleSet
    request: RequestInfo
    cancel: bool = False


class SecuritySwitchAddon:
    """Mitmproxy addon that redirects requests to the transport their path requires."""

    def __init__(
        self,
        store: RuleSetStore,
        application_path: str = "/",
        force_evaluation: bool = False,
    ):
        """Initialize the addon.

        Args:
            store: Holder of the active rule set (read once per request)
            application_path: URL path of the application root
            force_evaluation: Evaluate every request regardless of mode
        """
        self.store = store
        self.application_path = application_path
        self.force_evaluation = force_evaluation
        self._before_evaluate: list[Callable[[EvaluateRequestEvent], None]] = []

    def add_before_evaluate(self, callback: Callable[[EvaluateRequestEvent], None]) -> None:
        """Register a callback run before each evaluation."""
        self._before_evaluate.append(callback)

    def remove_before_evaluate(self, callback: Callable[[EvaluateRequestEvent], None]) -> None:
        self._before_evaluate.remove(callback)

    def _is_local(self, flow: http.HTTPFlow) -> bool:
        """Check if the client is the machine the proxy runs on."""
        conn = flow.client_conn
        remote_addr = conn.peername[0] if conn.peername else None
        local_addr = conn.sockname[0] if conn.sockname else None
        return is_local_request(remote_addr, local_addr)

    @log_errors
    def request(self, flow: http.HTTPFlow) -> None:
        """Handle HTTP/HTTPS request - evaluate and redirect if needed."""
        if flow.response is not None:
            # Already answered by another addon
            return

        url = flow.request.pretty_url
        method = flow.request.method
        conn_type = "https" if url.startswith("https://") else "http"

        rule_set = self.store.current
        request = RequestInfo.from_url(
            url,
            is_local=self._is_local(flow),
            application_path=self.application_path,
        )

        event = EvaluateRequestEvent(flow=flow, rule_set=rule_set, request=request)
        for callback in self._before_evaluate:
            callback(event)
        if event.cancel:
            switch_logging.log_decision(
                type=conn_type,
                url=url,
                method=method,
                local=request.is_local,
                cancelled=True,
            )
            return

        decision = evaluate_request(request, rule_set, self.force_evaluation)
        redirect = plan_redirect(url, decision.verdict, rule_set, self.application_path)

        if redirect is None:
            switch_logging.log_decision(
                type=conn_type,
                url=url,
                method=method,
                local=request.is_local,
                verdict=decision.verdict.value,
                reason=decision.reason,
            )
            return

        switch_logging.log_decision(
            type=conn_type,
            url=url,
            method=method,
            local=request.is_local,
            verdict=decision.verdict.value,
            reason=decision.reason,
            location=redirect.location,
            bypass_warning=redirect.bypass_warning,
        )

        if redirect.bypass_warning:
            flow.response = http.Response.make(
                200,
                bypass_page(redirect.location),
                {"Content-Type": "text/html; charset=utf-8"},
            )
        else:
            flow.response = http.Response.make(
                302,
                b"",
                {"Location": redirect.location},
            )
