"""Policy parser - builds a RuleSet from policy text or YAML.

Policy text is parsed with a PEG grammar (parsimonious), one line at a
time. The grammar decides what is syntactically valid; the builder then
checks settings and rule attributes and reports errors with the line
number they came from.

Example policy:

    # Everything insecure except the login page and the admin area
    [mode=RemoteOnly ignoreHandlers=BuiltIn]
    file login.aspx secure=Secure
    directory admin secure=Secure recurse=yes
    directory admin/public secure=Insecure recurse=yes
"""

import logging
from pathlib import Path
from typing import NamedTuple

import yaml
from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import NodeVisitor

from .errors import ConfigurationError, DuplicateRuleError
from .ruleset import RuleSet
from .types import (
    DirectoryRule,
    FileRule,
    IgnoreHandlers,
    Mode,
    PathRule,
    SecurityType,
    WarningBypassMode,
    parse_bool,
    parse_enum,
)

logger = logging.getLogger(__name__)

# =============================================================================
# PEG Grammar (source of truth for syntax)
# =============================================================================

GRAMMAR = Grammar(r"""
policy          = (line newline)* line?
line            = settings / rule / comment_only / blank
blank           = ws*
comment_only    = ws* comment
comment         = "#" ~"[^\n]*"
inline_comment  = ws+ comment
newline         = "\n" / "\r\n"
ws              = " " / "\t"

settings        = ws* "[" ws* attr (ws+ attr)* ws* "]" inline_comment? ws*

rule            = ws* element rule_path? rule_attrs? inline_comment? ws*
element         = ~"[a-zA-Z]+"
rule_path       = ws+ !(attr_key "=") path_value
path_value      = quoted_value / bare_path
bare_path       = ~"[^\\s#\"=\\[\\]]+"
rule_attrs      = (ws+ attr)+

attr            = attr_key "=" value
attr_key        = ~"[a-zA-Z]+"
value           = quoted_value / unquoted_value
quoted_value    = "\"" ~"[^\"]*" "\""
unquoted_value  = ~"[^\\s#\"\\[\\]]+"
""")

# Setting name (as written in configuration) -> RuleSet attribute
SETTINGS = {
    "mode": "mode",
    "encrypteduri": "secure_uri",
    "unencrypteduri": "insecure_uri",
    "maintainpath": "maintain_path",
    "warningbypassmode": "warning_bypass_mode",
    "bypassqueryparamname": "bypass_query_param_name",
    "ignorehandlers": "ignore_handlers",
}

# Attributes accepted on each kind of rule
RULE_ATTRS = {
    "file": ("path", "secure"),
    "directory": ("path", "secure", "recurse"),
}


# =============================================================================
# Parse tree -> line items
# =============================================================================


class Attr(NamedTuple):
    key: str
    value: str


class PathValue(NamedTuple):
    value: str


class SettingsLine(NamedTuple):
    attrs: list[Attr]


class RuleLine(NamedTuple):
    element: str
    path: str | None
    attrs: list[Attr]


def _collect(visited, cls) -> list:
    """Collect instances of cls from a nested visited-children structure."""
    if isinstance(visited, cls):
        return [visited]
    if isinstance(visited, list):
        found = []
        for item in visited:
            found.extend(_collect(item, cls))
        return found
    return []


class PolicyVisitor(NodeVisitor):
    """Turns the parse tree of one line into a SettingsLine or RuleLine."""

    unwrapped_exceptions = (ConfigurationError,)

    def visit_policy(self, node, visited_children):
        return _collect(visited_children, (SettingsLine, RuleLine))

    def visit_line(self, node, visited_children):
        return visited_children[0]

    def visit_blank(self, node, visited_children):
        return None

    def visit_comment_only(self, node, visited_children):
        return None

    def visit_settings(self, node, visited_children):
        return SettingsLine(attrs=_collect(visited_children, Attr))

    def visit_rule(self, node, visited_children):
        # ws* element rule_path? rule_attrs? inline_comment? ws*
        _, element, rule_path, rule_attrs, _, _ = visited_children
        paths = _collect(rule_path, PathValue)
        return RuleLine(
            element=element,
            path=paths[0].value if paths else None,
            attrs=_collect(rule_attrs, Attr),
        )

    def visit_element(self, node, visited_children):
        return node.text

    def visit_rule_path(self, node, visited_children):
        # ws+ !(attr_key "=") path_value
        _, _, path_value = visited_children
        return PathValue(path_value)

    def visit_path_value(self, node, visited_children):
        return visited_children[0]

    def visit_bare_path(self, node, visited_children):
        return node.text

    def visit_attr(self, node, visited_children):
        key, _, value = visited_children
        return Attr(key=key, value=value)

    def visit_attr_key(self, node, visited_children):
        return node.text

    def visit_value(self, node, visited_children):
        return visited_children[0]

    def visit_quoted_value(self, node, visited_children):
        return node.text[1:-1]

    def visit_unquoted_value(self, node, visited_children):
        return node.text

    def generic_visit(self, node, visited_children):
        return visited_children or node


# =============================================================================
# Line items -> RuleSet
# =============================================================================


def apply_setting(rule_set: RuleSet, key: str, value) -> None:
    """Set one configuration setting (e.g. "mode", "encryptedUri") on a rule set."""
    attr = SETTINGS.get(str(key).lower())
    if attr is None:
        raise ConfigurationError(f"'{key}' is not an acceptable setting.")

    if attr == "mode":
        # YAML 1.1 loads a bare On/Off as a boolean
        if isinstance(value, bool):
            value = Mode.ON if value else Mode.OFF
        value = parse_enum(Mode, value, key)
    elif attr == "ignore_handlers":
        value = parse_enum(IgnoreHandlers, value, key)
    elif attr == "warning_bypass_mode":
        value = parse_enum(WarningBypassMode, value, key)
    elif attr == "maintain_path":
        value = parse_bool(value)
    else:
        value = "" if value is None else str(value).strip()

    setattr(rule_set, attr, value)


def rule_from_dict(kind: str, entry: dict) -> PathRule:
    """Build a FileRule or DirectoryRule from its configuration attributes.

    Raises:
        ConfigurationError: unknown kind or attribute, missing path, bad value
    """
    kind = kind.lower()
    if kind not in RULE_ATTRS:
        raise ConfigurationError(f"'{kind}' is not an acceptable setting.")
    if not isinstance(entry, dict):
        raise ConfigurationError(f"{kind} entry must be a mapping, got {entry!r}")

    for key in entry:
        if key not in RULE_ATTRS[kind]:
            raise ConfigurationError(f"'{key}' is not a valid attribute for a {kind} rule.")

    path = entry.get("path")
    if path is None or not str(path).strip():
        raise ConfigurationError("'path' attribute not found.")

    security = parse_enum(SecurityType, entry.get("secure", SecurityType.SECURE), "secure")
    if kind == "directory":
        return DirectoryRule(str(path), security, parse_bool(entry.get("recurse", False)))
    return FileRule(str(path), security)


def _rule_from_line(item: RuleLine) -> PathRule:
    kind = item.element.lower()
    if kind not in RULE_ATTRS:
        raise ConfigurationError(f"'{item.element}' is not an acceptable setting.")

    entry = {}
    if item.path is not None:
        entry["path"] = item.path
    for key, value in item.attrs:
        key = key.lower()
        if key in entry:
            raise ConfigurationError(f"'{key}' given more than once.")
        entry[key] = value
    return rule_from_dict(kind, entry)


def _apply_line(rule_set: RuleSet, item) -> None:
    if isinstance(item, SettingsLine):
        for key, value in item.attrs:
            apply_setting(rule_set, key, value)
    else:
        rule_set.add_rule(_rule_from_line(item))


def _at_line(error: ConfigurationError, line: int) -> ConfigurationError:
    """Copy a configuration error, attaching a line number."""
    if isinstance(error, DuplicateRuleError):
        return DuplicateRuleError(error.path, error.kind, line=line)
    return ConfigurationError(error.message, line=line)


def _parse_lines(policy_text: str):
    """Yield (line_num, line, items) for each line, raising on syntax errors."""
    visitor = PolicyVisitor()
    for line_num, line in enumerate(policy_text.splitlines(), start=1):
        try:
            tree = GRAMMAR.parse(line)
        except ParseError as e:
            raise ConfigurationError(f"invalid syntax at column {e.pos + 1}", line=line_num) from e
        yield line_num, line, visitor.visit(tree)


# =============================================================================
# Public API
# =============================================================================


def parse_policy(policy_text: str) -> RuleSet:
    """Parse policy text into a finalized RuleSet.

    Settings lines accumulate; rule lines are added in order. Parsing stops
    at the first error.

    Raises:
        ConfigurationError: syntax error, bad setting or rule (with line number)
        DuplicateRuleError: two rules of one kind with the same path
    """
    rule_set = RuleSet()
    for line_num, _, items in _parse_lines(policy_text):
        for item in items:
            try:
                _apply_line(rule_set, item)
            except ConfigurationError as e:
                raise _at_line(e, line_num) from e
    return rule_set.finalize()


def validate_policy(policy_text: str) -> list[tuple[int, str, str]]:
    """Validate policy text and return every error found.

    Returns:
        List of (line_num, line_text, error_message) tuples. Errors that
        don't belong to a single line (such as a missing unencryptedUri)
        use line number 0. Empty list if the policy is valid.
    """
    errors = []
    rule_set = RuleSet()
    visitor = PolicyVisitor()

    for line_num, line in enumerate(policy_text.splitlines(), start=1):
        line_stripped = line.strip()
        try:
            tree = GRAMMAR.parse(line)
        except ParseError as e:
            errors.append((line_num, line_stripped, f"invalid syntax at column {e.pos + 1}"))
            continue
        for item in visitor.visit(tree):
            try:
                _apply_line(rule_set, item)
            except ConfigurationError as e:
                errors.append((line_num, line_stripped, str(e)))

    try:
        rule_set.finalize()
    except ConfigurationError as e:
        errors.append((0, "", str(e)))

    return errors


def ruleset_from_dict(data: dict) -> RuleSet:
    """Build a finalized RuleSet from a configuration mapping.

    The mapping holds the settings (mode, encryptedUri, ...) plus "files"
    and "directories" lists. It may also be wrapped in a single
    "securitySwitch" key.
    """
    if isinstance(data, dict) and list(data) == ["securitySwitch"]:
        data = data["securitySwitch"] or {}
    if not isinstance(data, dict):
        raise ConfigurationError("configuration must be a mapping")

    rule_set = RuleSet()
    for key, value in data.items():
        if key in ("files", "directories"):
            continue
        apply_setting(rule_set, key, value)

    for entry in data.get("files") or []:
        rule_set.add_file_rule(rule_from_dict("file", entry))
    for entry in data.get("directories") or []:
        rule_set.add_directory_rule(rule_from_dict("directory", entry))

    return rule_set.finalize()


def load_policy(path: str | Path) -> RuleSet:
    """Load a policy file: YAML for .yaml/.yml, policy text otherwise.

    Raises:
        OSError: the file cannot be read
        ConfigurationError: the file content is invalid
    """
    path = Path(path)
    text = path.read_text()

    if path.suffix.lower() in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {path}: {e}") from e
        rule_set = ruleset_from_dict(data or {})
    else:
        rule_set = parse_policy(text)

    logger.debug(
        "Loaded %s: %d file rules, %d directory rules",
        path,
        len(rule_set.files),
        len(rule_set.directories),
    )
    return rule_set


def rule_to_dict(rule: PathRule) -> dict:
    """Convert a rule to a dictionary in configuration format.

    The root directory is written "/" since a blank path is rejected on load.
    """
    result = {"path": rule.path or "/", "secure": rule.security.value}
    if isinstance(rule, DirectoryRule):
        result["recurse"] = rule.recurse
    return result


def ruleset_to_dict(rule_set: RuleSet) -> dict:
    """Convert a RuleSet to a mapping that ruleset_from_dict accepts."""
    return {
        "mode": rule_set.mode.value,
        "ignoreHandlers": rule_set.ignore_handlers.value,
        "maintainPath": rule_set.maintain_path,
        "warningBypassMode": rule_set.warning_bypass_mode.value,
        "bypassQueryParamName": rule_set.bypass_query_param_name,
        "encryptedUri": rule_set.secure_uri,
        "unencryptedUri": rule_set.insecure_uri,
        "files": [rule_to_dict(rule) for rule in rule_set.files],
        "directories": [rule_to_dict(rule) for rule in rule_set.directories],
    }
