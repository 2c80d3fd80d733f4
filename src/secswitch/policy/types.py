"""Rule types and enumerations for the security switch."""

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar

from .errors import ConfigurationError


class SecurityType(Enum):
    """Transport required for a path: the verdict of an evaluation."""

    SECURE = "Secure"
    INSECURE = "Insecure"
    IGNORE = "Ignore"  # leave the transport alone


class Mode(Enum):
    """Global gate deciding whether requests are evaluated at all."""

    ON = "On"
    REMOTE_ONLY = "RemoteOnly"
    LOCAL_ONLY = "LocalOnly"
    OFF = "Off"


class IgnoreHandlers(Enum):
    """Policy for skipping handler-style endpoints before rule lookup."""

    BUILT_IN = "BuiltIn"
    STANDARD_EXTENSIONS = "WithStandardExtensions"
    NONE = "None"


class WarningBypassMode(Enum):
    """When to avoid the browser warning on a secure -> insecure switch."""

    ALWAYS_BYPASS = "AlwaysBypass"
    BYPASS_WITH_QUERY_PARAM = "BypassWithQueryParam"
    NEVER_BYPASS = "NeverBypass"


# Extra spellings accepted in configuration files
_ENUM_ALIASES: dict[type, dict[str, Enum]] = {
    IgnoreHandlers: {"standardextensions": IgnoreHandlers.STANDARD_EXTENSIONS},
}

TRUE_VALUES = ("true", "yes", "on")


def parse_enum(enum_cls: type[Enum], value, attr: str):
    """Parse a configuration value into a member of enum_cls.

    Matching is case-insensitive against the member values. Members are
    returned unchanged.

    Raises:
        ConfigurationError: value is not one of the enumerated values
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        wanted = value.strip().lower()
        for member in enum_cls:
            if member.value.lower() == wanted:
                return member
        alias = _ENUM_ALIASES.get(enum_cls, {}).get(wanted)
        if alias is not None:
            return alias
    raise ConfigurationError(f"Invalid value for the '{attr}' attribute: {value!r}")


def parse_bool(value) -> bool:
    """Parse a flag: true, yes and on (any case) are true, anything else false."""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUE_VALUES


def normalize_path(path: str) -> str:
    """Normalize a relative path for storage and lookup.

    Lower-cases and strips a single leading and a single trailing "/".
    The application root ("/" or "") normalizes to "".

    Example:
        >>> normalize_path("/Admin/")
        'admin'
    """
    path = path.lower()
    if path.startswith("/"):
        path = path[1:]
    if path.endswith("/"):
        path = path[:-1]
    return path


@dataclass(frozen=True)
class PathRule:
    """A configured association between a path and a security requirement."""

    kind: ClassVar[str] = "path"

    path: str
    security: SecurityType = SecurityType.SECURE

    def __post_init__(self):
        if not isinstance(self.path, str):
            raise ConfigurationError(f"{self.kind} rule path must be a string, got {self.path!r}")
        if not isinstance(self.security, SecurityType):
            object.__setattr__(
                self, "security", parse_enum(SecurityType, self.security, "secure")
            )
        object.__setattr__(self, "path", normalize_path(self.path.strip()))


@dataclass(frozen=True)
class FileRule(PathRule):
    """Rule matching a single resource by its exact relative path."""

    kind: ClassVar[str] = "file"

    def __post_init__(self):
        super().__post_init__()
        if not self.path:
            raise ConfigurationError("file rule requires a non-empty path")


@dataclass(frozen=True)
class DirectoryRule(PathRule):
    """Rule matching a directory, and with recurse=True everything below it."""

    kind: ClassVar[str] = "directory"

    recurse: bool = False

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "recurse", parse_bool(self.recurse))
