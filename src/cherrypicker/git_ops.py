from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import shutil
import tempfile

from cherrypicker.models import GitIdentity
from cherrypicker.observability import log_event, log_warning_event
from cherrypicker.shell import (
    CensoringExecutor,
    Censor,
    CommandError,
    CommandOutput,
    Executor,
    ExecutorError,
    ProcessExecutor,
)


LOGGER = logging.getLogger("cherrypicker.git_ops")


class GitOperationError(RuntimeError):
    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(message)


class IdentityNotFoundError(LookupError):
    """No committer name/email could be resolved."""


class IdentityProvider(ABC):
    @abstractmethod
    async def get_identity(self) -> GitIdentity:
        """Resolve the identity used to author the next commit."""


class EnvIdentityProvider(IdentityProvider):
    """Reads GIT_COMMITTER_NAME and GIT_COMMITTER_EMAIL on every call."""

    def __init__(self, environ: Mapping[str, str] | None = None) -> None:
        self._environ = environ

    async def get_identity(self) -> GitIdentity:
        environ = os.environ if self._environ is None else self._environ
        name = environ.get("GIT_COMMITTER_NAME")
        email = environ.get("GIT_COMMITTER_EMAIL")
        if not name or not email:
            raise IdentityNotFoundError(
                "GIT_COMMITTER_NAME and GIT_COMMITTER_EMAIL must both be set"
            )
        return GitIdentity(name=name, email=email)


class StaticIdentityProvider(IdentityProvider):
    def __init__(self, identity: GitIdentity) -> None:
        self.identity = identity

    async def get_identity(self) -> GitIdentity:
        return self.identity


@dataclass(frozen=True)
class GitSettings:
    owner: str
    repo: str
    directory: Path | None = None
    censor: Censor | None = None
    executor: Executor | None = None
    identity_provider: IdentityProvider | None = None


def default_directory(owner: str, repo: str) -> Path:
    try:
        base = Path.cwd()
    except OSError:
        base = Path(tempfile.gettempdir())
    return base / owner / repo


def build_git(settings: GitSettings) -> Git:
    directory = settings.directory or default_directory(settings.owner, settings.repo)
    git = Git(
        directory,
        identity_provider=settings.identity_provider or EnvIdentityProvider(),
        executor=settings.executor or ProcessExecutor("git"),
        censor=settings.censor,
    )
    git.ensure_directory()
    return git


class Git:
    """A single working-directory clone.

    Every command goes through a CensoringExecutor built here, so callers
    cannot hand the facade an executor that skips redaction. Operations are
    expected to be awaited one at a time per handle.
    """

    def __init__(
        self,
        directory: Path,
        *,
        identity_provider: IdentityProvider,
        executor: Executor,
        censor: Censor | None = None,
    ) -> None:
        # clone passes the directory as its target while also running inside it.
        self.directory = directory.absolute()
        self.identity_provider = identity_provider
        self.executor = CensoringExecutor(executor, censor)

    def ensure_directory(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise GitOperationError(
                "mkdir", f"error creating git directory {self.directory}: {exc}"
            ) from exc

    async def clone(self, source: str) -> None:
        log_event(
            LOGGER,
            "git_clone",
            checkout_path=str(self.directory),
            source=self.executor.censor(source),
        )
        await self._run("clone", ["clone", source, str(self.directory)], "error creating a clone")

    async def checkout(self, ref: str) -> None:
        log_event(LOGGER, "git_checkout", checkout_path=str(self.directory), ref=ref)
        await self._run("checkout", ["checkout", ref], f"error checking out {ref!r}")

    async def checkout_new_branch(self, branch: str) -> None:
        log_event(
            LOGGER, "git_checkout_new_branch", checkout_path=str(self.directory), branch=branch
        )
        await self._run(
            "checkout_new_branch",
            ["checkout", "-b", branch],
            f"error checking out new branch {branch!r}",
        )

    async def commit(self, title: str, body: str) -> None:
        log_event(LOGGER, "git_commit", checkout_path=str(self.directory), title=title)
        try:
            identity = await self.identity_provider.get_identity()
        except IdentityNotFoundError as exc:
            raise GitOperationError("commit", f"get git user info: {exc}") from exc

        context = f"committing: {title!r}"
        await self._run("commit", ["add", "--all"], context)
        await self._run(
            "commit",
            [
                "commit",
                "--message",
                title,
                "--message",
                body,
                "--author",
                identity.author,
            ],
            context,
        )

    async def push(self, remote: str, branch: str, *, force: bool = False) -> None:
        args = ["push"]
        if force:
            args.append("--force")
        args.extend([remote, branch])
        log_event(
            LOGGER,
            "git_push",
            checkout_path=str(self.directory),
            remote=self.executor.censor(remote),
            branch=branch,
            force=force,
        )
        await self._run("push", args, f"error pushing {branch!r}")

    async def am(self, patch_path: Path | str) -> None:
        """Apply a mailbox patch with a three-way merge.

        On a failed apply the tree is returned to its previous state with
        ``git am --abort`` before the original error is raised. A spawn failure
        never ran ``am``, so nothing is aborted in that case.
        """
        log_event(LOGGER, "git_am", checkout_path=str(self.directory), patch_path=str(patch_path))
        try:
            await self._execute(["am", "--3way", str(patch_path)])
        except ExecutorError as exc:
            log_event(
                LOGGER,
                "git_am_failed",
                checkout_path=str(self.directory),
                patch_path=str(patch_path),
                error_type=type(exc).__name__,
            )
            if isinstance(exc, CommandError):
                await self._abort_am()
            raise GitOperationError(
                "am", f"error applying patch {str(patch_path)!r}: {exc}"
            ) from exc

    async def branch_exists(self, branch: str) -> bool:
        log_event(LOGGER, "git_branch_exists", checkout_path=str(self.directory), branch=branch)
        try:
            await self._execute(["ls-remote", "--exit-code", "--heads", "origin", branch])
        except ExecutorError as exc:
            log_warning_event(
                LOGGER,
                "git_branch_exists_failed",
                branch=branch,
                error_type=type(exc).__name__,
            )
            return False
        return True

    async def config(self, args: Sequence[str]) -> None:
        argv = ["config", *args]
        log_event(
            LOGGER,
            "git_config",
            checkout_path=str(self.directory),
            args=" ".join(self.executor.censor(arg) for arg in args),
        )
        await self._run("config", argv, "error configuring git")

    async def clean(self) -> None:
        log_event(LOGGER, "git_clean", checkout_path=str(self.directory))
        try:
            await asyncio.to_thread(shutil.rmtree, self.directory)
        except OSError as exc:
            raise GitOperationError(
                "clean", f"error removing {self.directory}: {exc}"
            ) from exc

    async def _abort_am(self) -> None:
        try:
            await self._execute(["am", "--abort"])
        except ExecutorError as abort_exc:
            log_warning_event(
                LOGGER,
                "git_am_abort_failed",
                checkout_path=str(self.directory),
                error_type=type(abort_exc).__name__,
                error=str(abort_exc),
            )

    async def _run(self, operation: str, args: list[str], context: str) -> CommandOutput:
        try:
            return await self._execute(args)
        except ExecutorError as exc:
            raise GitOperationError(operation, f"{context}: {exc}") from exc

    async def _execute(self, args: list[str]) -> CommandOutput:
        self.ensure_directory()
        return await self.executor.execute(args, cwd=self.directory)
