from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import TypeVar

from cherrypicker.commands import (
    is_cherry_pick_invite_command,
    is_picked,
    match_cherry_pick_command,
    match_label,
)
from cherrypicker.config import ActionConfig
from cherrypicker.context import ActionContext, IssueCommentEvent
from cherrypicker.fork_sync import ForkSynchronizer
from cherrypicker.git_ops import Git, GitOperationError, GitSettings, build_git
from cherrypicker.github_gateway import GitHubApiError, GitHubGateway
from cherrypicker.models import CherryPickRequest, CherryPickResult, PullRequestInfo
from cherrypicker.observability import log_event, log_warning_event


LOGGER = logging.getLogger("cherrypicker.workflow")
_TRUSTED_ASSOCIATIONS = frozenset({"OWNER", "MEMBER", "COLLABORATOR"})

T = TypeVar("T")
GitFactory = Callable[[str, str], Git]


class CherryPickError(RuntimeError):
    """A cherry-pick step failed; the cause holds the underlying error."""


@dataclass(frozen=True)
class PullRequestDraft:
    title: str
    body: str
    head: str
    base: str
    labels: tuple[str, ...]


class PullRequestOpener(ABC):
    @abstractmethod
    async def open_pull_request(self, draft: PullRequestDraft) -> str:
        """Open a pull request for a pushed cherry-pick branch and return its URL."""


def _default_git_factory(owner: str, repo: str) -> Git:
    return build_git(GitSettings(owner=owner, repo=repo))


class CherryPickWorkflow:
    def __init__(
        self,
        *,
        config: ActionConfig,
        github: GitHubGateway,
        forks: ForkSynchronizer,
        forking_user: str,
        git_factory: GitFactory | None = None,
        pr_opener: PullRequestOpener | None = None,
        patch_dir: Path | None = None,
        cleanup: bool = True,
    ) -> None:
        self.config = config
        self.github = github
        self.forks = forks
        self.forking_user = forking_user
        self.git_factory = git_factory or _default_git_factory
        self.pr_opener = pr_opener
        self.patch_dir = patch_dir
        self.cleanup = cleanup

    async def handle_issue_comment(self, context: ActionContext) -> list[CherryPickResult]:
        event = context.issue_comment_event()
        if event is None or event.action != "created" or not event.is_pull_request:
            log_event(LOGGER, "comment_ignored", event_name=context.event_name)
            return []

        if is_cherry_pick_invite_command(event.comment_body):
            log_event(
                LOGGER,
                "cherry_pick_invite_ignored",
                repo_full_name=f"{event.owner}/{event.repo}",
                pr_number=event.issue_number,
            )

        branches = match_cherry_pick_command(event.comment_body)
        if not branches:
            return []
        if not self._is_authorized(event):
            log_warning_event(
                LOGGER,
                "cherry_pick_unauthorized",
                author=event.comment_author,
                author_association=event.author_association,
                pr_number=event.issue_number,
            )
            return []

        pull_request = await self.github.get_pull_request(
            event.owner, event.repo, event.issue_number
        )
        results: list[CherryPickResult] = []
        for branch in branches:
            if is_picked(pull_request.labels, branch, self.config.picked_label_prefix):
                log_event(
                    LOGGER,
                    "cherry_pick_already_picked",
                    pr_number=event.issue_number,
                    target_branch=branch,
                )
                continue
            request = CherryPickRequest(
                forking_user=self.forking_user,
                owner=event.owner,
                repo=event.repo,
                pull_number=event.issue_number,
                target_branch=branch,
            )
            results.append(await self.cherry_pick(request, pull_request=pull_request))
            await self._mark_picked(request)
        return results

    async def cherry_pick(
        self,
        request: CherryPickRequest,
        *,
        pull_request: PullRequestInfo | None = None,
    ) -> CherryPickResult:
        log_event(
            LOGGER,
            "cherry_pick_started",
            repo_full_name=f"{request.owner}/{request.repo}",
            pr_number=request.pull_number,
            target_branch=request.target_branch,
        )
        fork_name = await _step(
            "ensure fork",
            self.forks.ensure_fork(request.forking_user, request.owner, request.repo),
        )

        git = self.git_factory(request.forking_user, fork_name)
        try:
            await _step(
                "clone repo",
                git.clone(f"https://github.com/{request.forking_user}/{fork_name}.git"),
            )
            await _step("checkout to target branch", git.checkout(request.target_branch))
            await _step("checkout new branch", git.checkout_new_branch(request.local_branch))
            patch_path = await _step(
                "download patch",
                self.github.download_patch(
                    request.owner,
                    request.repo,
                    request.pull_number,
                    request.target_branch,
                    directory=self.patch_dir,
                ),
            )
            await _step(
                f"apply #{request.pull_number} on top of target branch {request.target_branch}",
                git.am(patch_path),
            )
            await _step("push to github", git.push("origin", request.local_branch, force=True))
            pull_request_url = await self._hand_off(request, fork_name, pull_request)
        finally:
            if self.cleanup:
                await self._clean(git)

        log_event(
            LOGGER,
            "cherry_pick_finished",
            repo_full_name=f"{request.owner}/{request.repo}",
            pr_number=request.pull_number,
            branch=request.local_branch,
            pull_request_url=pull_request_url,
        )
        return CherryPickResult(
            request=request,
            fork_name=fork_name,
            branch=request.local_branch,
            pull_request_url=pull_request_url,
        )

    def build_draft(
        self, request: CherryPickRequest, pull_request: PullRequestInfo | None
    ) -> PullRequestDraft:
        labels: tuple[str, ...] = ()
        if pull_request is not None:
            labels = tuple(
                label
                for label in pull_request.labels
                if label not in self.config.exclude_labels
                and match_label(label, self.config.label_prefix) is None
                and match_label(label, self.config.picked_label_prefix) is None
            )
        return PullRequestDraft(
            title=request.title,
            body=(
                f"This is an automated cherry-pick of #{request.pull_number} "
                f"onto `{request.target_branch}`."
            ),
            head=f"{request.forking_user}:{request.local_branch}",
            base=request.target_branch,
            labels=labels,
        )

    async def _hand_off(
        self,
        request: CherryPickRequest,
        fork_name: str,
        pull_request: PullRequestInfo | None,
    ) -> str | None:
        draft = self.build_draft(request, pull_request)
        if self.pr_opener is None:
            log_event(
                LOGGER,
                "pull_request_handoff",
                opener=None,
                fork_name=fork_name,
                head=draft.head,
                base=draft.base,
            )
            return None
        url = await _step("create pull request", self.pr_opener.open_pull_request(draft))
        log_event(LOGGER, "pull_request_handoff", head=draft.head, base=draft.base, url=url)
        return url

    async def _mark_picked(self, request: CherryPickRequest) -> None:
        label = f"{self.config.picked_label_prefix}{request.target_branch}"
        try:
            await self.github.create_label(request.owner, request.repo, label)
        except GitHubApiError as exc:
            # 422 means the label already exists.
            if exc.status_code != 422:
                raise
        await self.github.add_labels(request.owner, request.repo, request.pull_number, [label])

    def _is_authorized(self, event: IssueCommentEvent) -> bool:
        if self.config.allow_all:
            return True
        return event.author_association in _TRUSTED_ASSOCIATIONS

    async def _clean(self, git: Git) -> None:
        try:
            await git.clean()
        except GitOperationError as exc:
            log_warning_event(
                LOGGER,
                "git_clean_failed",
                checkout_path=str(git.directory),
                error=str(exc),
            )


async def _step(description: str, awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except Exception as exc:  # noqa: BLE001
        raise CherryPickError(f"{description}: {exc}") from exc
