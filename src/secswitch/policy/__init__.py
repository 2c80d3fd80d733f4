"""Security switch rule store, policy parser and request evaluator."""

from .errors import ConfigurationError, DuplicateRuleError
from .evaluator import (
    Decision,
    RequestInfo,
    evaluate,
    evaluate_request,
    relative_directory,
    relative_file_path,
    request_matches_mode,
)
from .parser import (
    load_policy,
    parse_policy,
    rule_to_dict,
    ruleset_from_dict,
    ruleset_to_dict,
    validate_policy,
)
from .ruleset import (
    DirectoryRuleCollection,
    FileRuleCollection,
    RuleSet,
)
from .store import RuleSetStore
from .types import (
    DirectoryRule,
    FileRule,
    IgnoreHandlers,
    Mode,
    PathRule,
    SecurityType,
    WarningBypassMode,
    normalize_path,
)

__all__ = [
    # Types
    "SecurityType",
    "Mode",
    "IgnoreHandlers",
    "WarningBypassMode",
    "PathRule",
    "FileRule",
    "DirectoryRule",
    "normalize_path",
    # Errors
    "ConfigurationError",
    "DuplicateRuleError",
    # Rule store
    "RuleSet",
    "FileRuleCollection",
    "DirectoryRuleCollection",
    "RuleSetStore",
    # Parser
    "parse_policy",
    "validate_policy",
    "ruleset_from_dict",
    "ruleset_to_dict",
    "rule_to_dict",
    "load_policy",
    # Evaluator
    "RequestInfo",
    "Decision",
    "evaluate",
    "evaluate_request",
    "request_matches_mode",
    "relative_file_path",
    "relative_directory",
]
