"""Tests for rule types and the rule store (secswitch.policy.types/ruleset)."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from secswitch.policy import (
    ConfigurationError,
    DirectoryRule,
    DirectoryRuleCollection,
    DuplicateRuleError,
    FileRule,
    FileRuleCollection,
    IgnoreHandlers,
    Mode,
    RuleSet,
    SecurityType,
    WarningBypassMode,
    normalize_path,
)
from secswitch.policy.types import parse_bool, parse_enum


class TestNormalizePath:
    @pytest.mark.parametrize(
        "path,expected",
        [
            ("admin", "admin"),
            ("/admin", "admin"),
            ("admin/", "admin"),
            ("/Admin/", "admin"),
            (" /Admin/", " /admin"),
            ("/", ""),
            ("", ""),
            ("//admin//", "/admin/"),
        ],
    )
    def test_normalize(self, path, expected):
        assert normalize_path(path) == expected


class TestParseHelpers:
    def test_parse_enum_case_insensitive(self):
        assert parse_enum(Mode, "remoteonly", "mode") == Mode.REMOTE_ONLY
        assert parse_enum(Mode, " OFF ", "mode") == Mode.OFF
        assert parse_enum(SecurityType, "ignore", "secure") == SecurityType.IGNORE

    def test_parse_enum_member_passthrough(self):
        assert parse_enum(Mode, Mode.LOCAL_ONLY, "mode") is Mode.LOCAL_ONLY

    def test_parse_enum_alias(self):
        assert parse_enum(IgnoreHandlers, "StandardExtensions", "ignoreHandlers") == IgnoreHandlers.STANDARD_EXTENSIONS

    def test_parse_enum_invalid(self):
        with pytest.raises(ConfigurationError, match="Invalid value for the 'mode' attribute"):
            parse_enum(Mode, "Sometimes", "mode")

    def test_parse_enum_wrong_member_type(self):
        with pytest.raises(ConfigurationError):
            parse_enum(Mode, SecurityType.SECURE, "mode")

    @pytest.mark.parametrize("value", ["true", "True", "YES", "on", " on ", True])
    def test_parse_bool_true(self, value):
        assert parse_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "no", "off", "1", "", "enabled", False])
    def test_parse_bool_false(self, value):
        assert parse_bool(value) is False


class TestRules:
    def test_file_rule_defaults_to_secure(self):
        rule = FileRule("Login.aspx")
        assert rule.path == "login.aspx"
        assert rule.security == SecurityType.SECURE

    def test_configured_path_is_trimmed(self):
        assert FileRule("  /Admin/Login.aspx  ").path == "admin/login.aspx"
        assert DirectoryRule(" / ").path == ""

    def test_file_rule_parses_security_string(self):
        assert FileRule("a.aspx", "insecure").security == SecurityType.INSECURE

    def test_file_rule_rejects_empty_path(self):
        with pytest.raises(ConfigurationError, match="non-empty path"):
            FileRule("/")

    def test_file_rule_rejects_non_string_path(self):
        with pytest.raises(ConfigurationError):
            FileRule(None)

    def test_directory_rule_root(self):
        rule = DirectoryRule("/", SecurityType.INSECURE)
        assert rule.path == ""
        assert rule.recurse is False

    def test_directory_rule_recurse_string(self):
        assert DirectoryRule("admin", recurse="yes").recurse is True
        assert DirectoryRule("admin", recurse="no").recurse is False

    def test_rules_are_immutable(self):
        rule = FileRule("a.aspx")
        with pytest.raises(AttributeError):
            rule.path = "b.aspx"

    def test_invalid_security(self):
        with pytest.raises(ConfigurationError, match="'secure'"):
            DirectoryRule("admin", "Maybe")


class TestCollections:
    def test_insert_then_lookup(self):
        files = FileRuleCollection()
        rule = FileRule("Admin/Login.aspx", SecurityType.SECURE)
        files.add(rule)
        assert files.find("/admin/login.aspx") is rule
        assert files.find("ADMIN/LOGIN.ASPX") is rule
        assert "admin/login.aspx" in files
        assert rule in files
        assert len(files) == 1
        assert files[0] is rule

    def test_missing_lookup(self):
        assert FileRuleCollection().find("nothing.aspx") is None

    def test_duplicate_after_normalization(self):
        files = FileRuleCollection([FileRule("login.aspx")])
        with pytest.raises(DuplicateRuleError) as exc_info:
            files.add(FileRule("/LOGIN.aspx", SecurityType.INSECURE))
        assert exc_info.value.path == "login.aspx"
        assert exc_info.value.kind == "file"
        assert isinstance(exc_info.value, ConfigurationError)

    def test_same_path_in_both_collections(self):
        rule_set = RuleSet()
        rule_set.add_file_rule(FileRule("admin"))
        rule_set.add_directory_rule(DirectoryRule("admin"))
        assert len(rule_set.files) == 1
        assert len(rule_set.directories) == 1

    def test_wrong_rule_type(self):
        with pytest.raises(TypeError):
            FileRuleCollection().add(DirectoryRule("admin"))

    def test_iteration_keeps_insertion_order(self):
        dirs = DirectoryRuleCollection()
        for path in ["b", "a", "c"]:
            dirs.add(DirectoryRule(path))
        assert [rule.path for rule in dirs] == ["b", "a", "c"]

    def test_collection_equality(self):
        assert FileRuleCollection([FileRule("a")]) == FileRuleCollection([FileRule("/A/")])
        assert FileRuleCollection([FileRule("a")]) != FileRuleCollection([FileRule("b")])


class TestFindBestDirectory:
    def make(self, *rules):
        return DirectoryRuleCollection(rules)

    def test_exact_match_non_recursive(self):
        dirs = self.make(DirectoryRule("admin"))
        assert dirs.find_best("admin").path == "admin"
        assert dirs.find_best("admin/users") is None

    def test_recursive_descendants(self):
        dirs = self.make(DirectoryRule("admin", recurse=True))
        assert dirs.find_best("admin/users/edit").path == "admin"

    def test_longest_match_wins(self):
        dirs = self.make(
            DirectoryRule("admin/public/docs", SecurityType.IGNORE, recurse=True),
            DirectoryRule("admin", SecurityType.SECURE, recurse=True),
            DirectoryRule("admin/public", SecurityType.INSECURE, recurse=True),
        )
        assert dirs.find_best("admin/public/docs/2024").security == SecurityType.IGNORE
        assert dirs.find_best("admin/public/faq").security == SecurityType.INSECURE
        assert dirs.find_best("admin/other").security == SecurityType.SECURE

    def test_exact_non_recursive_beats_shorter_recursive(self):
        dirs = self.make(
            DirectoryRule("", SecurityType.SECURE, recurse=True),
            DirectoryRule("blog", SecurityType.INSECURE),
        )
        assert dirs.find_best("blog").security == SecurityType.INSECURE
        assert dirs.find_best("blog/2024").security == SecurityType.SECURE

    def test_recursive_root_matches_everything(self):
        dirs = self.make(DirectoryRule("/", SecurityType.SECURE, recurse=True))
        assert dirs.find_best("").path == ""
        assert dirs.find_best("a/b/c").path == ""

    def test_lookup_is_normalized(self):
        dirs = self.make(DirectoryRule("admin"))
        assert dirs.find_best("/Admin/").path == "admin"


class TestRuleSet:
    def test_defaults(self):
        rule_set = RuleSet()
        assert rule_set.mode == Mode.ON
        assert rule_set.ignore_handlers == IgnoreHandlers.BUILT_IN
        assert rule_set.maintain_path is True
        assert rule_set.bypass_query_param_name == "BypassSecurityWarning"
        assert rule_set.warning_bypass_mode == WarningBypassMode.BYPASS_WITH_QUERY_PARAM
        assert rule_set.secure_uri == ""
        assert rule_set.insecure_uri == ""

    def test_add_rule_dispatch(self):
        rule_set = RuleSet()
        rule_set.add_rule(FileRule("a.aspx"))
        rule_set.add_rule(DirectoryRule("b"))
        assert rule_set.find_file_rule("a.aspx") is not None
        assert rule_set.find_best_directory_rule("b") is not None

    def test_finalize_parses_strings(self):
        rule_set = RuleSet(mode="localonly", ignore_handlers="none", maintain_path="no").finalize()
        assert rule_set.mode == Mode.LOCAL_ONLY
        assert rule_set.ignore_handlers == IgnoreHandlers.NONE
        assert rule_set.maintain_path is False

    def test_finalize_invalid_enum(self):
        with pytest.raises(ConfigurationError, match="mode"):
            RuleSet(mode="Sideways").finalize()

    @pytest.mark.parametrize(
        "secure_uri,insecure_uri",
        [("https://secure.example.com/", ""), ("", "http://www.example.com/")],
    )
    def test_finalize_partial_uri_pair(self, secure_uri, insecure_uri):
        with pytest.raises(ConfigurationError, match="both 'encryptedUri' and 'unencryptedUri'"):
            RuleSet(secure_uri=secure_uri, insecure_uri=insecure_uri).finalize()

    def test_finalize_full_uri_pair(self):
        rule_set = RuleSet(
            secure_uri=" https://secure.example.com/ ",
            insecure_uri="http://www.example.com/",
        ).finalize()
        assert rule_set.secure_uri == "https://secure.example.com/"

    def test_finalize_requires_bypass_param_name(self):
        with pytest.raises(ConfigurationError, match="bypassQueryParamName"):
            RuleSet(bypass_query_param_name="").finalize()

    def test_no_bypass_param_needed_when_never_bypassing(self):
        rule_set = RuleSet(
            bypass_query_param_name="",
            warning_bypass_mode=WarningBypassMode.NEVER_BYPASS,
        ).finalize()
        assert rule_set.finalized

    def test_finalize_is_idempotent(self):
        rule_set = RuleSet().finalize()
        assert rule_set.finalize() is rule_set

    def test_finalized_rule_set_is_read_only(self):
        rule_set = RuleSet().finalize()
        with pytest.raises(ConfigurationError):
            rule_set.mode = Mode.OFF
        with pytest.raises(ConfigurationError):
            rule_set.add_file_rule(FileRule("late.aspx"))
        with pytest.raises(ConfigurationError):
            rule_set.add_directory_rule(DirectoryRule("late"))

    def test_equality_ignores_finalized_flag(self):
        a = RuleSet()
        a.add_file_rule(FileRule("a.aspx"))
        b = RuleSet()
        b.add_file_rule(FileRule("A.aspx"))
        b.finalize()
        assert a == b
