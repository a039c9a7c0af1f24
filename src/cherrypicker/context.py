from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
from typing import cast

from cherrypicker.observability import log_warning_event


LOGGER = logging.getLogger("cherrypicker.context")


@dataclass(frozen=True)
class IssueCommentEvent:
    action: str
    owner: str
    repo: str
    issue_number: int
    is_pull_request: bool
    comment_body: str
    comment_author: str
    author_association: str


@dataclass(frozen=True)
class ActionContext:
    """Workflow run metadata and the webhook payload that triggered it."""

    event_name: str
    payload: dict[str, object] = field(repr=False)
    sha: str = ""
    ref: str = ""
    workflow: str = ""
    action: str = ""
    actor: str = ""
    job: str = ""
    run_number: int = 10
    run_id: int = 10
    api_url: str = "https://api.github.com"
    server_url: str = "https://github.com"
    graphql_url: str = "https://api.github.com/graphql"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ActionContext:
        env = os.environ if environ is None else environ
        return cls(
            event_name=env.get("GITHUB_EVENT_NAME", "undefined"),
            payload=_read_payload(env.get("GITHUB_EVENT_PATH")),
            sha=env.get("GITHUB_SHA", ""),
            ref=env.get("GITHUB_REF", ""),
            workflow=env.get("GITHUB_WORKFLOW", ""),
            action=env.get("GITHUB_ACTION", ""),
            actor=env.get("GITHUB_ACTOR", ""),
            job=env.get("GITHUB_JOB", ""),
            run_number=_int_or_default(env.get("GITHUB_RUN_NUMBER"), 10),
            run_id=_int_or_default(env.get("GITHUB_RUN_ID"), 10),
            api_url=env.get("GITHUB_API_URL", "https://api.github.com"),
            server_url=env.get("GITHUB_SERVER_URL", "https://github.com"),
            graphql_url=env.get("GITHUB_GRAPHQL_URL", "https://api.github.com/graphql"),
        )

    def issue_comment_event(self) -> IssueCommentEvent | None:
        if self.event_name != "issue_comment":
            return None
        issue = _as_object_dict(self.payload.get("issue"))
        comment = _as_object_dict(self.payload.get("comment"))
        repository = _as_object_dict(self.payload.get("repository"))
        if issue is None or comment is None or repository is None:
            return None
        owner_obj = _as_object_dict(repository.get("owner"))
        user_obj = _as_object_dict(comment.get("user"))
        number = issue.get("number")
        if not isinstance(number, int) or isinstance(number, bool):
            return None
        return IssueCommentEvent(
            action=_as_string(self.payload.get("action")),
            owner=_as_string(owner_obj.get("login")) if owner_obj else "",
            repo=_as_string(repository.get("name")),
            issue_number=number,
            is_pull_request=issue.get("pull_request") is not None,
            comment_body=_as_string(comment.get("body")),
            comment_author=_as_string(user_obj.get("login")) if user_obj else "",
            author_association=_as_string(comment.get("author_association")).upper(),
        )


async def load_context(environ: Mapping[str, str] | None = None) -> ActionContext:
    # Reading the event file is blocking IO; keep it off the event loop.
    return await asyncio.to_thread(ActionContext.from_env, environ)


def _read_payload(path: str | None) -> dict[str, object]:
    if not path:
        return {}
    try:
        raw = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        log_warning_event(LOGGER, "event_payload_unreadable", path=path, error=str(exc))
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        log_warning_event(LOGGER, "event_payload_invalid", path=path, error=str(exc))
        return {}
    payload_obj = _as_object_dict(payload)
    return payload_obj if payload_obj is not None else {}


def _int_or_default(value: str | None, default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


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
