from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging
import time
from typing import Literal, NoReturn, Protocol

from cherrypicker.github_gateway import GitHubApiError
from cherrypicker.models import Repository
from cherrypicker.observability import log_event, log_warning_event
from cherrypicker.pagination import Pageable, list_all


LOGGER = logging.getLogger("cherrypicker.fork_sync")

# GitHub documents that forks can take up to five minutes to appear.
DEFAULT_POLL_INTERVAL_SECONDS = 15.0
DEFAULT_TIMEOUT_SECONDS = 6 * 60.0

ForkState = Literal["unchecked", "checking", "exists", "creating", "waiting", "timed_out"]


class ForkTimeoutError(TimeoutError):
    pass


class ForkApi(Protocol):
    async def get_repository(self, owner: str, repo: str) -> Repository: ...

    async def create_fork(self, owner: str, repo: str) -> Repository: ...

    def list_repositories_for_user(self, username: str) -> Pageable[Repository]: ...


class ForkSynchronizer:
    """Makes sure ``forking_user`` owns a fork of ``owner/repo``.

    The existence check runs before any create request, so repeated
    invocations never ask GitHub for a second fork. After creating, the fork
    is polled until GitHub reports it, bounded by ``timeout_seconds``.
    """

    def __init__(
        self,
        github: ForkApi,
        *,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.github = github
        self.poll_interval_seconds = poll_interval_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock

    async def ensure_fork(self, forking_user: str, owner: str, repo: str) -> str:
        """Return the name of the fork under ``forking_user``, creating it if needed.

        The name can differ from ``repo`` when GitHub resolves a naming conflict.
        """
        _log_state("checking", forking_user, owner, repo)
        if await self.is_forked(forking_user, owner, repo):
            _log_state("exists", forking_user, owner, repo)
            return repo

        _log_state("creating", forking_user, owner, repo)
        forked = await self.github.create_fork(owner, repo)
        fork_name = forked.name or repo

        _log_state("waiting", forking_user, owner, repo)
        await self.wait_for_fork(forking_user, fork_name)
        _log_state("exists", forking_user, owner, repo)
        return fork_name

    async def is_forked(self, forking_user: str, owner: str, repo: str) -> bool:
        repositories = await list_all(self.github.list_repositories_for_user(forking_user))
        candidate = next(
            (
                item
                for item in repositories
                if item.fork and item.name.casefold() == repo.casefold()
            ),
            None,
        )
        if candidate is None:
            log_event(
                LOGGER,
                "fork_check",
                forking_user=forking_user,
                repo_full_name=f"{owner}/{repo}",
                listed=len(repositories),
                found=False,
            )
            return False

        detail = await self.github.get_repository(forking_user, candidate.name)
        expected_parent = f"{owner}/{repo}"
        matched = (
            detail.parent_full_name is not None
            and detail.parent_full_name.casefold() == expected_parent.casefold()
        )
        log_event(
            LOGGER,
            "fork_check",
            forking_user=forking_user,
            repo_full_name=expected_parent,
            listed=len(repositories),
            found=True,
            parent_full_name=detail.parent_full_name,
            matched=matched,
        )
        return matched

    async def wait_for_fork(self, owner: str, repo: str) -> None:
        full_name = f"{owner}/{repo}"
        deadline = self._clock() + self.timeout_seconds
        attempt = 0
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                _raise_fork_timeout(full_name, attempt)
            attempt += 1
            try:
                repository = await asyncio.wait_for(
                    self.github.get_repository(owner, repo), timeout=remaining
                )
            except TimeoutError:
                log_warning_event(
                    LOGGER,
                    "fork_poll_timed_out",
                    repo_full_name=full_name,
                    attempt=attempt,
                    timeout_seconds=remaining,
                )
            except GitHubApiError as exc:
                log_warning_event(
                    LOGGER,
                    "fork_poll_failed",
                    repo_full_name=full_name,
                    attempt=attempt,
                    error=str(exc),
                )
            else:
                if repository.fork:
                    log_event(LOGGER, "fork_ready", repo_full_name=full_name, attempt=attempt)
                    return

            if self._clock() >= deadline:
                _raise_fork_timeout(full_name, attempt)
            await self._sleep(self.poll_interval_seconds)


def _log_state(state: ForkState, forking_user: str, owner: str, repo: str) -> None:
    log_event(
        LOGGER,
        "fork_state",
        state=state,
        forking_user=forking_user,
        repo_full_name=f"{owner}/{repo}",
    )


def _raise_fork_timeout(full_name: str, attempts: int) -> NoReturn:
    log_warning_event(
        LOGGER,
        "fork_state",
        state="timed_out",
        repo_full_name=full_name,
        attempts=attempts,
    )
    raise ForkTimeoutError(f"timed out waiting for {full_name} to appear on GitHub")
