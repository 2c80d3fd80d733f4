"""Configuration errors raised while building a rule set."""


class ConfigurationError(Exception):
    """Invalid security switch configuration.

    Raised while loading or finalizing a rule set. Fatal: requests cannot
    be evaluated until the configuration is corrected.

    Attributes:
        line: 1-based line number in the policy text, if known
    """

    def __init__(self, message: str, line: int | None = None):
        self.message = message
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class DuplicateRuleError(ConfigurationError):
    """Two rules of the same kind normalize to the same path."""

    def __init__(self, path: str, kind: str, line: int | None = None):
        self.path = path
        self.kind = kind
        super().__init__(f"duplicate {kind} rule for path '{path}'", line=line)
