"""Rule store - rule collections and the RuleSet aggregate.

A RuleSet is built once from configuration, finalized, and then shared
read-only by every request evaluation. Reloading builds a new RuleSet
rather than mutating the current one (see store.py).
"""

from dataclasses import dataclass, field
from typing import Iterable, Iterator

from .errors import ConfigurationError, DuplicateRuleError
from .types import (
    DirectoryRule,
    FileRule,
    IgnoreHandlers,
    Mode,
    PathRule,
    WarningBypassMode,
    normalize_path,
    parse_bool,
    parse_enum,
)

DEFAULT_BYPASS_QUERY_PARAM = "BypassSecurityWarning"


class RuleCollection:
    """Ordered collection of rules of one kind, unique by normalized path."""

    rule_type: type[PathRule] = PathRule

    def __init__(self, rules: Iterable[PathRule] = ()):
        self._rules: dict[str, PathRule] = {}
        self._frozen = False
        for rule in rules:
            self.add(rule)

    def add(self, rule: PathRule) -> None:
        """Append a rule.

        Raises:
            DuplicateRuleError: a rule with the same normalized path exists
            ConfigurationError: the collection belongs to a finalized rule set
        """
        if not isinstance(rule, self.rule_type):
            raise TypeError(
                f"{type(self).__name__} only accepts {self.rule_type.__name__}, "
                f"got {type(rule).__name__}"
            )
        if self._frozen:
            raise ConfigurationError(
                f"cannot add {rule.kind} rule '{rule.path}' to a finalized rule set"
            )
        if rule.path in self._rules:
            raise DuplicateRuleError(rule.path, rule.kind)
        self._rules[rule.path] = rule

    def find(self, path: str) -> PathRule | None:
        """Exact, case-insensitive lookup by path."""
        return self._rules.get(normalize_path(path))

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __iter__(self) -> Iterator[PathRule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, path) -> bool:
        if isinstance(path, PathRule):
            path = path.path
        return normalize_path(path) in self._rules

    def __getitem__(self, index: int) -> PathRule:
        return list(self._rules.values())[index]

    def __eq__(self, other) -> bool:
        if not isinstance(other, RuleCollection):
            return NotImplemented
        return type(self) is type(other) and list(self) == list(other)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self._rules.values())!r})"


class FileRuleCollection(RuleCollection):
    rule_type = FileRule


class DirectoryRuleCollection(RuleCollection):
    rule_type = DirectoryRule

    def find_best(self, directory_path: str) -> DirectoryRule | None:
        """Find the directory rule that applies to a request directory.

        Every rule is scanned; there is no early exit because the deepest
        match has to be found. A rule matches when it is recursive and the
        directory starts with the rule path, or when the directory equals the
        rule path. The longest matching path wins, and among equal lengths
        the first rule added.

        Recursive matching is a plain string prefix, not segment aware: a
        recursive rule for "admin" also matches "administration".
        """
        directory = normalize_path(directory_path)
        best = None
        for rule in self._rules.values():
            if (rule.recurse and directory.startswith(rule.path)) or directory == rule.path:
                if best is None or len(rule.path) > len(best.path):
                    best = rule
        return best


@dataclass(eq=True)
class RuleSet:
    """Security switch configuration: global settings plus path rules.

    Attributes:
        mode: Whether requests are evaluated at all (On/RemoteOnly/LocalOnly/Off)
        ignore_handlers: Which handler endpoints are skipped before rule lookup
        maintain_path: Keep the request path when redirecting to a configured URI
        bypass_query_param_name: Query parameter requesting a warning bypass
        warning_bypass_mode: When to bypass the secure -> insecure warning
        secure_uri: Base URI for secure redirects ("" = same host, https)
        insecure_uri: Base URI for insecure redirects ("" = same host, http)
        files: Exact-path rules
        directories: Directory rules
    """

    mode: Mode = Mode.ON
    ignore_handlers: IgnoreHandlers = IgnoreHandlers.BUILT_IN
    maintain_path: bool = True
    bypass_query_param_name: str = DEFAULT_BYPASS_QUERY_PARAM
    warning_bypass_mode: WarningBypassMode = WarningBypassMode.BYPASS_WITH_QUERY_PARAM
    secure_uri: str = ""
    insecure_uri: str = ""
    files: FileRuleCollection = field(default_factory=FileRuleCollection)
    directories: DirectoryRuleCollection = field(default_factory=DirectoryRuleCollection)
    _finalized: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name, value):
        if self.__dict__.get("_finalized", False):
            raise ConfigurationError(f"cannot set '{name}' on a finalized rule set")
        super().__setattr__(name, value)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def add_file_rule(self, rule: FileRule) -> None:
        self.files.add(rule)

    def add_directory_rule(self, rule: DirectoryRule) -> None:
        self.directories.add(rule)

    def add_rule(self, rule: PathRule) -> None:
        """Add a file or directory rule to the matching collection."""
        if isinstance(rule, DirectoryRule):
            self.add_directory_rule(rule)
        elif isinstance(rule, FileRule):
            self.add_file_rule(rule)
        else:
            raise TypeError(f"Unsupported rule type: {type(rule).__name__}")

    def find_file_rule(self, path: str) -> FileRule | None:
        return self.files.find(path)

    def find_best_directory_rule(self, directory_path: str) -> DirectoryRule | None:
        return self.directories.find_best(directory_path)

    def finalize(self) -> "RuleSet":
        """Validate the settings and make the rule set read-only.

        Enum settings given as strings are parsed here. Calling finalize on
        an already finalized rule set is a no-op.

        Raises:
            ConfigurationError: invalid enum value, or only one of
                secure_uri/insecure_uri set
        """
        if self._finalized:
            return self

        self.mode = parse_enum(Mode, self.mode, "mode")
        self.ignore_handlers = parse_enum(IgnoreHandlers, self.ignore_handlers, "ignoreHandlers")
        self.warning_bypass_mode = parse_enum(
            WarningBypassMode, self.warning_bypass_mode, "warningBypassMode"
        )
        self.maintain_path = parse_bool(self.maintain_path)
        self.secure_uri = (self.secure_uri or "").strip()
        self.insecure_uri = (self.insecure_uri or "").strip()

        if bool(self.secure_uri) != bool(self.insecure_uri):
            raise ConfigurationError(
                "You must specify both 'encryptedUri' and 'unencryptedUri', or neither."
            )
        if (
            self.warning_bypass_mode == WarningBypassMode.BYPASS_WITH_QUERY_PARAM
            and not self.bypass_query_param_name
        ):
            raise ConfigurationError(
                "'bypassQueryParamName' must be set when warningBypassMode is BypassWithQueryParam."
            )

        self.files.freeze()
        self.directories.freeze()
        object.__setattr__(self, "_finalized", True)
        return self
