from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
import json
import logging
import os
from pathlib import Path
import random
import re
import tempfile
from typing import cast
from urllib.parse import urlencode

from cherrypicker.commands import normalize_branch
from cherrypicker.models import Page, PullRequestInfo, Repository
from cherrypicker.observability import log_event
from cherrypicker.shell import ExecutorError, run_bytes


LOGGER = logging.getLogger("cherrypicker.github_gateway")
_NEXT_LINK_RE = re.compile(r'<[^>]*>\s*;\s*rel="next"')
_HEADER_END_RE = re.compile(rb"\r?\n\r?\n")


class GitHubApiError(RuntimeError):
    """Non-success response or transport failure talking to GitHub."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class _HttpResponse:
    status_code: int
    headers: dict[str, str]
    body: bytes


@dataclass(frozen=True)
class GitHubGateway:
    """Stateless GitHub REST client backed by the ``gh api`` CLI."""

    token: str | None = field(default=None, repr=False)
    gh_binary: str = "gh"

    async def create_fork(self, owner: str, repo: str) -> Repository:
        path = f"/repos/{owner}/{repo}/forks"
        try:
            payload = await self._api_json("POST", path, payload={})
            forked = _parse_repository(payload)
        except Exception as exc:  # noqa: BLE001
            log_event(
                LOGGER,
                "github_fork_create_failed",
                repo_full_name=f"{owner}/{repo}",
                error_type=type(exc).__name__,
            )
            raise
        log_event(
            LOGGER,
            "fork_created",
            repo_full_name=f"{owner}/{repo}",
            fork_full_name=forked.full_name,
        )
        return forked

    async def get_repository(self, owner: str, repo: str) -> Repository:
        payload = await self._api_json("GET", f"/repos/{owner}/{repo}")
        repository = _parse_repository(payload)
        log_event(
            LOGGER,
            "github_read",
            endpoint="repository",
            repo_full_name=repository.full_name,
            fork=repository.fork,
        )
        return repository

    def list_repositories_for_user(
        self,
        username: str,
        *,
        type_: str | None = None,
        sort: str | None = None,
        direction: str | None = None,
        per_page: int | None = None,
    ) -> ListReposForUser:
        return ListReposForUser(
            gateway=self,
            username=username,
            type_=type_,
            sort=sort,
            direction=direction,
            per_page=per_page,
        )

    async def fetch_repositories_page(self, request: ListReposForUser) -> Page[Repository]:
        query = request.query_params()
        path = f"/users/{request.username}/repos"
        if query:
            path = f"{path}?{urlencode(query)}"
        response = await self._api_request("GET", path)
        payload = _decode_json(response.body, path=path)
        if not isinstance(payload, list):
            raise GitHubApiError("Unexpected GitHub response: expected list for repositories")
        repositories = tuple(_parse_repository(item) for item in payload)
        has_next = _has_next_link(response.headers.get("link"))
        log_event(
            LOGGER,
            "github_read",
            endpoint="user_repositories",
            username=request.username,
            page=request.page,
            count=len(repositories),
            has_next=has_next,
        )
        return Page(items=repositories, has_next=has_next)

    async def get_pull_request(self, owner: str, repo: str, number: int) -> PullRequestInfo:
        payload = await self._api_json("GET", f"/repos/{owner}/{repo}/pulls/{number}")
        payload_obj = _as_object_dict(payload)
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for pull request")
        labels: list[str] = []
        labels_obj = payload_obj.get("labels")
        if isinstance(labels_obj, list):
            for entry in labels_obj:
                entry_obj = _as_object_dict(entry)
                if entry_obj is None:
                    continue
                name = entry_obj.get("name")
                if isinstance(name, str):
                    labels.append(name)
        patch_url = payload_obj.get("patch_url")
        return PullRequestInfo(
            number=_as_int(payload_obj.get("number"), field="number"),
            title=_as_string(payload_obj.get("title")),
            patch_url=patch_url if isinstance(patch_url, str) and patch_url else None,
            labels=tuple(labels),
            merged=payload_obj.get("merged") is True,
        )

    async def create_label(
        self,
        owner: str,
        repo: str,
        name: str,
        *,
        color: str | None = None,
        description: str | None = None,
    ) -> None:
        await self._api_json(
            "POST",
            f"/repos/{owner}/{repo}/labels",
            payload={
                "name": name,
                "color": color or _random_color(),
                "description": description if description is not None else name,
            },
        )
        log_event(LOGGER, "github_label_created", repo_full_name=f"{owner}/{repo}", label=name)

    async def add_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> None:
        await self._api_json(
            "POST",
            f"/repos/{owner}/{repo}/issues/{number}/labels",
            payload={"labels": labels},
        )
        log_event(
            LOGGER,
            "github_labels_added",
            repo_full_name=f"{owner}/{repo}",
            number=number,
            labels=",".join(labels),
        )

    async def download_patch(
        self,
        owner: str,
        repo: str,
        pull_number: int,
        target_branch: str,
        *,
        directory: Path | None = None,
    ) -> Path:
        filename = f"{owner}-{repo}-{pull_number}-{normalize_branch(target_branch)}"
        pull_request = await self.get_pull_request(owner, repo, pull_number)
        if pull_request.patch_url is None:
            raise GitHubApiError(f"pull request patch_url is missing. {filename}")

        response = await self._api_request("GET", pull_request.patch_url)
        target = (directory or Path(tempfile.gettempdir())) / filename
        try:
            await asyncio.to_thread(target.write_bytes, response.body)
        except OSError as exc:
            raise RuntimeError(f"write patch file {filename}: {exc}") from exc
        log_event(
            LOGGER,
            "github_patch_downloaded",
            repo_full_name=f"{owner}/{repo}",
            pr_number=pull_number,
            patch_path=str(target),
        )
        return target

    async def _api_json(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> object:
        response = await self._api_request(method, path, payload=payload)
        return _decode_json(response.body, path=path)

    async def _api_request(
        self, method: str, path: str, payload: dict[str, object] | None = None
    ) -> _HttpResponse:
        method_upper = method.upper()
        cmd = [self.gh_binary, "api", "--method", method_upper, "--include"]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)
        cmd.append(path)

        try:
            raw = await run_bytes(cmd, input_text=stdin_payload, env=self._env(), check=False)
        except ExecutorError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                error_type=type(exc).__name__,
            )
            raise GitHubApiError(f"GitHub {method_upper} {path} could not run: {exc}") from exc

        try:
            response = _parse_http_response(raw)
        except RuntimeError as exc:
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                error_type=type(exc).__name__,
                raw_preview=_preview_for_log(raw.decode("utf-8", errors="replace")),
            )
            raise GitHubApiError(f"GitHub {method_upper} {path} failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            message = response.body.decode("utf-8", errors="replace").strip() or "<empty>"
            log_event(
                LOGGER,
                "github_request_failed",
                method=method_upper,
                path=path,
                status_code=response.status_code,
                body_preview=_preview_for_log(message),
            )
            raise GitHubApiError(
                f"GitHub API request {method_upper} {path} failed with status "
                f"{response.status_code}: {message}",
                status_code=response.status_code,
            )
        return response

    def _env(self) -> Mapping[str, str] | None:
        if self.token is None:
            return None
        return {**os.environ, "GH_TOKEN": self.token}


@dataclass(frozen=True)
class ListReposForUser:
    """Query for ``GET /users/{username}/repos``.

    ``page`` is GitHub's one-based page number. ``list_by_page`` takes the
    zero-based index used by ``list_all`` and translates it.
    """

    gateway: GitHubGateway = field(repr=False, compare=False)
    username: str
    type_: str | None = None
    sort: str | None = None
    direction: str | None = None
    per_page: int | None = None
    page: int | None = None

    def query_params(self) -> dict[str, str]:
        params: dict[str, str] = {}
        if self.type_ is not None:
            params["type"] = self.type_
        if self.sort is not None:
            params["sort"] = self.sort
        if self.direction is not None:
            params["direction"] = self.direction
        if self.per_page is not None:
            params["per_page"] = str(self.per_page)
        if self.page is not None:
            params["page"] = str(self.page)
        return params

    def for_page(self, page: int) -> ListReposForUser:
        return replace(self, page=page)

    async def send(self) -> Page[Repository]:
        return await self.gateway.fetch_repositories_page(self)

    async def list_by_page(self, page: int) -> Page[Repository]:
        return await self.for_page(page + 1).send()


def _parse_http_response(raw: bytes) -> _HttpResponse:
    # gh prints one header block per response (redirects included); the body
    # follows the last one and is returned untouched.
    remainder = raw
    status_code: int | None = None
    headers: dict[str, str] = {}
    while remainder.startswith(b"HTTP/"):
        match = _HEADER_END_RE.search(remainder)
        if match is None:
            header_block, remainder = remainder, b""
        else:
            header_block, remainder = remainder[: match.start()], remainder[match.end() :]
        lines = header_block.decode("iso-8859-1").replace("\r\n", "\n").split("\n")
        status_code = _parse_status_line(lines[0])
        headers = {}
        for line in lines[1:]:
            if ":" not in line:
                continue
            key, value = line.split(":", 1)
            headers[key.strip().lower()] = value.strip()

    if status_code is None:
        raise RuntimeError("Unexpected GitHub response: missing HTTP status line")
    return _HttpResponse(status_code=status_code, headers=headers, body=remainder)


def _parse_status_line(status_line: str) -> int:
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}")
    try:
        return int(status_parts[1])
    except ValueError as exc:
        raise RuntimeError(f"Unexpected GitHub response status line: {status_line!r}") from exc


def _has_next_link(link_header: str | None) -> bool:
    if not link_header:
        return False
    return _NEXT_LINK_RE.search(link_header) is not None


def _decode_json(body: bytes, *, path: str) -> object:
    if not body.strip():
        return None
    try:
        return json.loads(body)
    except ValueError as exc:
        raise GitHubApiError(f"GitHub response for {path} is not JSON: {exc}") from exc


def _parse_repository(value: object) -> Repository:
    value_obj = _as_object_dict(value)
    if value_obj is None:
        raise GitHubApiError("Unexpected GitHub response: expected object for repository")
    parent_obj = _as_object_dict(value_obj.get("parent"))
    parent_full_name = parent_obj.get("full_name") if parent_obj is not None else None
    return Repository(
        name=_as_string(value_obj.get("name")),
        full_name=_as_string(value_obj.get("full_name")),
        fork=value_obj.get("fork") is True,
        parent_full_name=parent_full_name if isinstance(parent_full_name, str) else None,
    )


def _random_color() -> str:
    return f"{random.randint(0, 0xFFFFFF):06x}"


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = text.replace("\n", "\\n").strip()
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
