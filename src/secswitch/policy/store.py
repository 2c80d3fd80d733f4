"""Copy-on-reload holder for the active RuleSet."""

import logging
import threading
from pathlib import Path
from typing import Callable

from .parser import load_policy
from .ruleset import RuleSet

logger = logging.getLogger(__name__)


class RuleSetStore:
    """Thread-safe reference to the current RuleSet.

    Requests read `current` once and evaluate against that snapshot.
    Reloading builds a complete new RuleSet before swapping it in, so an
    in-flight evaluation never sees a partially updated rule set, and a
    reload that fails leaves the previous rule set active.

    Example:
        store = RuleSetStore(source="/etc/secswitch/site.policy")
        store.reload()

        # Per request
        decision = evaluate_request(request, store.current)

        # On SIGHUP
        store.reload()
    """

    def __init__(
        self,
        rule_set: RuleSet | None = None,
        source: str | Path | None = None,
        loader: Callable[[str | Path], RuleSet] = load_policy,
    ):
        """Initialize the store.

        Args:
            rule_set: Initial rule set (an empty, finalized one if omitted)
            source: Policy file used by reload()
            loader: Function building a RuleSet from source
        """
        self.source = source
        self._loader = loader
        self._lock = threading.Lock()
        self._generation = 0
        self._current = (rule_set if rule_set is not None else RuleSet()).finalize()

    @property
    def current(self) -> RuleSet:
        """The active rule set."""
        return self._current

    @property
    def generation(self) -> int:
        """Number of swaps since the store was created."""
        return self._generation

    def swap(self, rule_set: RuleSet) -> RuleSet:
        """Finalize and install a new rule set. Returns the previous one."""
        rule_set.finalize()
        with self._lock:
            previous = self._current
            self._current = rule_set
            self._generation += 1
        return previous

    def reload(self) -> RuleSet:
        """Rebuild the rule set from source and install it.

        Raises:
            ValueError: the store has no source
            OSError, ConfigurationError: loading failed (current rule set kept)
        """
        if self.source is None:
            raise ValueError("RuleSetStore has no source to reload from")
        rule_set = self._loader(self.source)
        self.swap(rule_set)
        logger.info(
            "Loaded policy %s (generation %d): %d file rules, %d directory rules",
            self.source,
            self._generation,
            len(rule_set.files),
            len(rule_set.directories),
        )
        return rule_set
