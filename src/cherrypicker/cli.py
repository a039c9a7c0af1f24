from __future__ import annotations

import argparse
import asyncio
import os
from pathlib import Path

from cherrypicker.config import ActionConfig, get_input, get_input_required, load_config
from cherrypicker.context import load_context
from cherrypicker.fork_sync import ForkSynchronizer
from cherrypicker.git_ops import Git, GitSettings, build_git
from cherrypicker.github_gateway import GitHubGateway
from cherrypicker.models import CherryPickRequest, CherryPickResult
from cherrypicker.observability import configure_logging
from cherrypicker.shell import redact_secrets
from cherrypicker.workflow import CherryPickWorkflow


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cherrypicker")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Handle the GitHub Actions event that triggered this workflow run"
    )
    _add_verbose_argument(run_parser)

    pick_parser = subparsers.add_parser(
        "pick", help="Cherry-pick one merged pull request onto a branch"
    )
    pick_parser.add_argument("--owner", required=True)
    pick_parser.add_argument("--repo", required=True)
    pick_parser.add_argument("--pr", type=int, required=True, help="Pull request number")
    pick_parser.add_argument("--target", required=True, help="Target branch")
    pick_parser.add_argument(
        "--forking-user", required=True, help="Account that owns the fork to push to"
    )
    pick_parser.add_argument(
        "--workdir",
        type=Path,
        default=None,
        help="Parent directory for the working clone (defaults to the current directory)",
    )
    pick_parser.add_argument(
        "--keep", action="store_true", help="Keep the working clone after finishing"
    )
    _add_verbose_argument(pick_parser)
    return parser


def _add_verbose_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default=None,
        choices=("low", "high"),
        help="Log to stderr; 'low' keeps warnings and milestone events only (default: high)",
    )


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(getattr(args, "verbose", None))

    if args.command == "run":
        results = asyncio.run(_cmd_run())
        _print_results(results)
        return
    if args.command == "pick":
        result = asyncio.run(_cmd_pick(args))
        _print_results([result])
        return

    raise RuntimeError(f"Unknown command: {args.command}")


async def _cmd_run() -> list[CherryPickResult]:
    token = get_input_required(os.environ, "repo-token")
    config = load_config()
    context = await load_context()
    forking_user = get_input(os.environ, "forking-user") or context.actor
    workflow = _build_workflow(config, token=token, forking_user=forking_user, workdir=None)
    return await workflow.handle_issue_comment(context)


async def _cmd_pick(args: argparse.Namespace) -> CherryPickResult:
    token = os.environ.get("GH_TOKEN") or os.environ.get("GITHUB_TOKEN")
    config = load_config()
    workflow = _build_workflow(
        config,
        token=token,
        forking_user=args.forking_user,
        workdir=args.workdir,
        cleanup=not args.keep,
    )
    request = CherryPickRequest(
        forking_user=args.forking_user,
        owner=args.owner,
        repo=args.repo,
        pull_number=args.pr,
        target_branch=args.target,
    )
    return await workflow.cherry_pick(request)


def _build_workflow(
    config: ActionConfig,
    *,
    token: str | None,
    forking_user: str,
    workdir: Path | None,
    cleanup: bool = True,
) -> CherryPickWorkflow:
    github = GitHubGateway(token=token)
    censor = redact_secrets(token) if token else None

    def git_factory(owner: str, repo: str) -> Git:
        directory = workdir / owner / repo if workdir is not None else None
        return build_git(GitSettings(owner=owner, repo=repo, directory=directory, censor=censor))

    return CherryPickWorkflow(
        config=config,
        github=github,
        forks=ForkSynchronizer(github),
        forking_user=forking_user,
        git_factory=git_factory,
        cleanup=cleanup,
    )


def _print_results(results: list[CherryPickResult]) -> None:
    if not results:
        print("Nothing to cherry-pick.")
        return
    for result in results:
        line = f"Pushed {result.branch} to {result.request.forking_user}/{result.fork_name}"
        if result.pull_request_url:
            line += f" ({result.pull_request_url})"
        print(line)
