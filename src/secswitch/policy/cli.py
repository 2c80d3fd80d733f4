#!/usr/bin/env python3
"""Command-line utility to validate and try out security switch policies.

Usage:
    python -m secswitch.policy <site.policy>
    python -m secswitch.policy <site.policy> --check /login.aspx --check /admin/
    python -m secswitch.policy <site.yaml> --dump
    python -m secswitch.policy <site.policy> --analyze-log <decisions.jsonl>

Exit codes:
    0 - Valid policy
    1 - Invalid policy
    2 - File not found or invalid YAML/JSON
"""

import argparse
import json
import sys
from collections import Counter
from pathlib import Path

import yaml

from .errors import ConfigurationError
from .evaluator import Decision, RequestInfo, evaluate_request
from .parser import load_policy, ruleset_to_dict, validate_policy
from .ruleset import RuleSet
from .types import SecurityType


def request_from_entry(entry: dict, application_path: str = "/") -> RequestInfo | None:
    """Build a RequestInfo from a log entry with a "url" or "path" field."""
    is_local = bool(entry.get("local", False))
    if entry.get("url"):
        return RequestInfo.from_url(entry["url"], is_local=is_local, application_path=application_path)
    if entry.get("path"):
        return RequestInfo(path=entry["path"], is_local=is_local, application_path=application_path)
    return None


def format_decision(path: str, decision: Decision) -> str:
    """Format a decision for human-readable output."""
    return f"{decision.verdict.value:<8} {path}  <- {decision.reason}"


def analyze_requests(
    rule_set: RuleSet,
    entries: list[dict],
    application_path: str = "/",
    force_evaluation: bool = False,
) -> dict:
    """Replay logged requests against a rule set.

    Uses the same evaluator as the live proxy, so the counts match what
    the proxy would decide with this policy.

    Returns dict with:
        counts: Counter of verdict value -> number of requests
        paths: dict of verdict value -> Counter of path -> number of requests
        skipped: entries without a url or path
    """
    counts: Counter = Counter()
    paths: dict[str, Counter] = {verdict.value: Counter() for verdict in SecurityType}
    skipped = 0

    for entry in entries:
        request = request_from_entry(entry, application_path)
        if request is None:
            skipped += 1
            continue
        decision = evaluate_request(request, rule_set, force_evaluation)
        counts[decision.verdict.value] += 1
        paths[decision.verdict.value][request.path] += 1

    return {"counts": counts, "paths": paths, "skipped": skipped}


def print_analysis_results(results: dict, verbose: bool = False) -> None:
    """Print analysis results in human-readable format."""
    if verbose:
        for verdict in SecurityType:
            by_path = results["paths"][verdict.value]
            if not by_path:
                continue
            print(f"{verdict.value.upper()} requests:")
            print("-" * 60)
            for path, count in sorted(by_path.items()):
                count_str = f" (x{count})" if count > 1 else ""
                print(f"  {path}{count_str}")
            print()

    counts = results["counts"]
    summary = ", ".join(f"{counts[verdict.value]} {verdict.value.lower()}" for verdict in SecurityType)
    total = sum(counts.values())
    print(f"Summary: {summary} (out of {total} requests)")
    if results["skipped"]:
        print(f"Skipped {results['skipped']} entries without a url or path")


def load_requests_log(log_path: Path) -> list[dict]:
    """Load requests from a JSONL log file."""
    entries = []
    with open(log_path) as f:
        for line_num, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError as e:
                print(f"Warning: Invalid JSON on line {line_num}: {e}", file=sys.stderr)
    return entries


def print_validation_errors(config: Path, errors: list[tuple[int, str, str]]) -> None:
    print(f"\n{config}")
    for line_num, line, error in errors:
        if line_num:
            print(f"  line {line_num}: {line}")
            print(f"    ^ {error}")
        else:
            print(f"  {error}")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        description="Validate a security switch policy and try it against request paths",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s site.policy
  %(prog)s site.policy --check /login.aspx --check /admin/users.aspx
  %(prog)s site.policy --check /admin/ --local
  %(prog)s site.yaml --dump
  %(prog)s site.policy --analyze-log /tmp/secswitch-decisions.jsonl
""",
    )
    parser.add_argument("config", type=Path, help="Policy file (.policy text or .yaml)")
    parser.add_argument(
        "--check",
        action="append",
        metavar="PATH",
        default=[],
        help="Print the verdict for a request path or URL (repeatable)",
    )
    parser.add_argument(
        "--local", action="store_true", help="Treat checked requests as local"
    )
    parser.add_argument(
        "--force", action="store_true", help="Evaluate regardless of mode"
    )
    parser.add_argument(
        "--app-path",
        default="/",
        metavar="PATH",
        help="URL path of the application root (default: /)",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Output the normalized rule set as JSON to stdout",
    )
    parser.add_argument(
        "--analyze-log",
        type=Path,
        metavar="REQUESTS.jsonl",
        help="Replay a requests log against the policy (test before deploying)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Show every path in analyze mode"
    )

    args = parser.parse_args(argv)

    if any(not path.strip() for path in args.check):
        print("Error: --check requires a non-empty path or URL", file=sys.stderr)
        sys.exit(2)

    if not args.config.exists():
        print(f"Error: File not found: {args.config}", file=sys.stderr)
        sys.exit(2)

    is_yaml = args.config.suffix.lower() in (".yaml", ".yml")
    try:
        text = args.config.read_text()
        if is_yaml:
            yaml.safe_load(text)
    except OSError as e:
        print(f"Error: Cannot read {args.config}: {e}", file=sys.stderr)
        sys.exit(2)
    except yaml.YAMLError as e:
        print(f"Error: Invalid YAML: {e}", file=sys.stderr)
        sys.exit(2)

    # Policy text reports every error; YAML stops at the first one
    if not is_yaml:
        errors = validate_policy(text)
        if errors:
            print_validation_errors(args.config, errors)
            print(f"\nValidation failed: {len(errors)} error(s)")
            sys.exit(1)

    try:
        rule_set = load_policy(args.config)
    except ConfigurationError as e:
        print_validation_errors(args.config, [(e.line or 0, "", str(e))])
        print("\nValidation failed: 1 error(s)")
        sys.exit(1)

    if args.dump:
        print(json.dumps(ruleset_to_dict(rule_set), indent=2))
        sys.exit(0)

    if args.analyze_log:
        if not args.analyze_log.exists():
            print(f"Error: Log file not found: {args.analyze_log}", file=sys.stderr)
            sys.exit(2)
        entries = load_requests_log(args.analyze_log)
        if not entries:
            print("No requests found in log file.", file=sys.stderr)
            sys.exit(0)
        results = analyze_requests(rule_set, entries, args.app_path, args.force)
        print_analysis_results(results, verbose=args.verbose)
        sys.exit(0)

    for path in args.check:
        request = request_from_entry(
            {"url" if "://" in path else "path": path, "local": args.local},
            args.app_path,
        )
        decision = evaluate_request(request, rule_set, args.force)
        print(format_decision(path, decision))

    if not args.check:
        print(
            f"Validation passed: {len(rule_set.files)} file rule(s), "
            f"{len(rule_set.directories)} directory rule(s)"
        )
    sys.exit(0)


if __name__ == "__main__":
    main()
