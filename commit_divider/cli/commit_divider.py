"""
Command line front end: analyze a diff, propose a division, or propose a
cross-repository split, printing the JSON the tool server would return.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from commit_divider.core.config import CommitSize, DividerConfig, DivisionStrategy, load_config
from commit_divider.core.diff_parser import split_file_diffs
from commit_divider.core.errors import DividerError
from commit_divider.core.models import FileDiff
from commit_divider.core.proposal import ProposalBuilder
from commit_divider.core.semantic import analyze_changes
from commit_divider.mcp_server.service import DivisionService

OFFLINE_RANGE = "diff-file"


def _emit(data: Dict[str, Any], output: Optional[str]) -> None:
    text = json.dumps(data, indent=2)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        print(f"✅ Wrote {output}", file=sys.stderr)
    else:
        print(text)


def _read_diff_file(path: str) -> List[FileDiff]:
    source = sys.stdin if path == "-" else open(path, "r", encoding="utf-8")
    with source:
        return split_file_diffs(source.read())


def _config(args: argparse.Namespace) -> DividerConfig:
    overrides = {
        "repo_path": getattr(args, "repo", None),
        "repos_config": getattr(args, "repos_config", None),
        "log_level": args.log_level,
    }
    return load_config(config_path=args.config, cli_args=overrides)


def _run_analyze(args: argparse.Namespace) -> int:
    config = _config(args)
    if args.diff_file:
        result = analyze_changes(_read_diff_file(args.diff_file), config)
        _emit({"commitRange": args.range or OFFLINE_RANGE, "analysis": result.to_dict()}, args.output)
        return 0
    data = asyncio.run(DivisionService(config).analyze_commit_range(args.range, config.repo_path))
    _emit(data, args.output)
    return 1 if "degraded" in data else 0


def _run_propose(args: argparse.Namespace) -> int:
    config = _config(args)
    if args.diff_file:
        proposal = ProposalBuilder(config).build(
            _read_diff_file(args.diff_file),
            args.range or OFFLINE_RANGE,
            strategy=args.strategy,
            commit_size=args.commit_size,
            min_confidence=args.min_confidence,
            max_commits=args.max_commits,
        )
        _emit({"proposal": proposal.to_dict()}, args.output)
        return 0
    data = asyncio.run(DivisionService(config).propose_division(
        args.range, config.repo_path, args.strategy, args.commit_size, args.min_confidence, args.max_commits,
    ))
    _emit(data, args.output)
    return 1 if "degraded" in data else 0


def _run_multi_propose(args: argparse.Namespace) -> int:
    config = _config(args)
    service = DivisionService(config)
    data = asyncio.run(service.propose_multi_repo_split(args.range, config.repos_config, args.repos or None))
    _emit(data, args.output)
    return 0


def _add_common_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", help="Path to configuration YAML file (default: commitdivider.config.yaml)")
    parser.add_argument("--output", help="Write JSON to a file instead of stdout.")
    parser.add_argument("--log-level", dest="log_level", help="Logging level (default: INFO)")


def _add_source_flags(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--diff-file", help="Read a unified diff from this file ('-' for stdin) instead of jj.")
    parser.add_argument("--repo", help="Jujutsu repository path (overrides config repo_path).")
    parser.add_argument("--range", help="Revision range, e.g. '@-..@'. Required unless --diff-file is given.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="CommitDivider CLI: split commits into smaller semantic commits."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze the changes of a diff or commit range")
    _add_source_flags(analyze)
    _add_common_flags(analyze)
    analyze.set_defaults(func=_run_analyze)

    propose = subparsers.add_parser("propose", help="Propose a commit division")
    _add_source_flags(propose)
    _add_common_flags(propose)
    propose.add_argument("--strategy", choices=[s.value for s in DivisionStrategy],
                         help="Division strategy (default from config: balanced).")
    propose.add_argument("--commit-size", dest="commit_size", choices=[s.value for s in CommitSize],
                         help="Commit size preference (default from config: balanced).")
    propose.add_argument("--min-confidence", dest="min_confidence", type=float,
                         help="Merge commits below this confidence.")
    propose.add_argument("--max-commits", dest="max_commits", type=int, help="Upper bound on proposed commits.")
    propose.set_defaults(func=_run_propose)

    multi = subparsers.add_parser("multi-propose", help="Propose a split across several repositories")
    _add_common_flags(multi)
    multi.add_argument("--range", required=True, help="Revision range applied to every repository.")
    multi.add_argument("--repos-config", dest="repos_config",
                       help="Repository registry file (default: <repos_dir>/repos.json).")
    multi.add_argument("--repos", nargs="*", default=None, help="Subset of registry repositories to include.")
    multi.set_defaults(func=_run_multi_propose)

    return parser


def main():
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()
    if getattr(args, "diff_file", None) is None and args.command != "multi-propose" and not args.range:
        parser.error("--range is required unless --diff-file is given")

    logging.basicConfig(level=getattr(logging, (args.log_level or "INFO").upper(), logging.INFO), stream=sys.stderr)
    try:
        exit_code = args.func(args)
        sys.exit(exit_code)
    except DividerError as e:
        print(f"\n❌ {e.message}", file=sys.stderr)
        if e.hint:
            print(f"   Hint: {e.hint}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"\n❌ {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
