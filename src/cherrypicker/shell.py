from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
import logging
from pathlib import Path


LOGGER = logging.getLogger("cherrypicker.shell")
REDACTED = "***"

Censor = Callable[[str], str]


@dataclass(frozen=True)
class CommandOutput:
    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str


class ExecutorError(RuntimeError):
    """Base class for failures raised by an Executor."""


class CommandSpawnError(ExecutorError):
    """The program could not be started at all."""

    def __init__(self, command: Sequence[str], cause: OSError) -> None:
        self.command = tuple(command)
        self.cause = cause
        super().__init__(
            f"Command could not be spawned\ncmd: {' '.join(self.command)}\nerror: {cause}"
        )


class CommandError(ExecutorError):
    """The program ran and exited with a non-zero status."""

    def __init__(self, output: CommandOutput) -> None:
        self.output = output
        super().__init__(
            "Command failed\n"
            f"cmd: {' '.join(output.command)}\n"
            f"exit: {output.returncode}\n"
            f"stdout:\n{output.stdout}\n"
            f"stderr:\n{output.stderr}"
        )

    @property
    def command(self) -> tuple[str, ...]:
        return self.output.command


class Executor(ABC):
    @abstractmethod
    async def execute(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        input_text: str | None = None,
    ) -> CommandOutput:
        """Run one command and return its output, raising ExecutorError on failure."""


class ProcessExecutor(Executor):
    def __init__(self, program: str = "git") -> None:
        self.program = program

    async def execute(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        input_text: str | None = None,
    ) -> CommandOutput:
        output = await _spawn([self.program, *args], cwd=cwd, input_text=input_text)
        if output.returncode != 0:
            _log_failure(output)
            raise CommandError(output)
        return output


class CensoringExecutor(Executor):
    """Runs every argument through ``censor`` before handing it to ``inner``."""

    def __init__(self, inner: Executor, censor: Censor | None = None) -> None:
        self.inner = inner
        self.censor = censor or no_censor

    async def execute(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        input_text: str | None = None,
    ) -> CommandOutput:
        censored = [self.censor(arg) for arg in args]
        return await self.inner.execute(censored, cwd=cwd, input_text=input_text)


def no_censor(arg: str) -> str:
    return arg


def redact_secrets(*secrets: str) -> Censor:
    """Build a censor that replaces each non-empty secret with a placeholder."""
    active = tuple(sorted({secret for secret in secrets if secret}, key=len, reverse=True))

    def censor(arg: str) -> str:
        for secret in active:
            arg = arg.replace(secret, REDACTED)
        return arg

    return censor


async def run_bytes(
    argv: list[str],
    *,
    cwd: Path | None = None,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
) -> bytes:
    """Like ProcessExecutor.execute but hands back stdout undecoded."""
    returncode, stdout, stderr = await _spawn_raw(argv, cwd=cwd, input_text=input_text, env=env)
    if check and returncode != 0:
        output = _decode_output(argv, returncode, stdout, stderr)
        _log_failure(output)
        raise CommandError(output)
    return stdout


async def _spawn(
    argv: list[str],
    *,
    cwd: Path | None,
    input_text: str | None,
) -> CommandOutput:
    returncode, stdout, stderr = await _spawn_raw(argv, cwd=cwd, input_text=input_text)
    return _decode_output(argv, returncode, stdout, stderr)


async def _spawn_raw(
    argv: list[str],
    *,
    cwd: Path | None,
    input_text: str | None,
    env: Mapping[str, str] | None = None,
) -> tuple[int, bytes, bytes]:
    stdin = asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdin=stdin,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        LOGGER.error(
            "event=command_spawn_failed command=%s error=%s",
            " ".join(argv),
            _preview(str(exc)),
        )
        raise CommandSpawnError(argv, exc) from exc

    stdout, stderr = await proc.communicate(
        input_text.encode("utf-8") if input_text is not None else None
    )
    returncode = proc.returncode if proc.returncode is not None else -1
    return returncode, stdout, stderr


def _decode_output(argv: list[str], returncode: int, stdout: bytes, stderr: bytes) -> CommandOutput:
    return CommandOutput(
        command=tuple(argv),
        returncode=returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


def _log_failure(output: CommandOutput) -> None:
    # Some non-zero exits are answers, e.g. ls-remote --exit-code for a missing branch.
    LOGGER.warning(
        "event=command_failed command=%s exit_code=%s stderr=%s stdout=%s",
        " ".join(output.command),
        output.returncode,
        _preview(output.stderr),
        _preview(output.stdout),
    )


def _preview(text: str, *, limit: int = 200) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."
