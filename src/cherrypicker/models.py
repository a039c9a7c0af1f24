from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar


T = TypeVar("T")


@dataclass(frozen=True)
class GitIdentity:
    name: str
    email: str

    @property
    def author(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    has_next: bool


@dataclass(frozen=True)
class Repository:
    name: str
    full_name: str
    fork: bool
    parent_full_name: str | None = None


@dataclass(frozen=True)
class PullRequestInfo:
    number: int
    title: str
    patch_url: str | None
    labels: tuple[str, ...]
    merged: bool = False


@dataclass(frozen=True)
class CherryPickRequest:
    forking_user: str
    owner: str
    repo: str
    pull_number: int
    target_branch: str

    @property
    def local_branch(self) -> str:
        return f"cherry-pick-{self.pull_number}-to-{self.target_branch}"

    @property
    def title(self) -> str:
        return f"cherry-pick #{self.pull_number} to {self.target_branch}"


@dataclass(frozen=True)
class CherryPickResult:
    request: CherryPickRequest
    fork_name: str
    branch: str
    pull_request_url: str | None
