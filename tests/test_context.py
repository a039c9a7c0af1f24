from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from cherrypicker.context import ActionContext, IssueCommentEvent, load_context
from cherrypicker.observability import configure_logging


def _comment_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "action": "created",
        "issue": {"number": 42, "pull_request": {"url": "https://api.github.com/x"}},
        "comment": {
            "body": "/cherry-pick release-1.2",
            "user": {"login": "alice"},
            "author_association": "member",
        },
        "repository": {"name": "widgets", "owner": {"login": "acme"}},
    }
    payload.update(overrides)
    return payload


def _write_event(tmp_path: Path, payload: object) -> Path:
    path = tmp_path / "event.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_from_env_reads_metadata_and_payload(tmp_path: Path) -> None:
    event_path = _write_event(tmp_path, _comment_payload())

    context = ActionContext.from_env(
        {
            "GITHUB_EVENT_NAME": "issue_comment",
            "GITHUB_EVENT_PATH": str(event_path),
            "GITHUB_ACTOR": "alice",
            "GITHUB_SHA": "abc",
            "GITHUB_RUN_NUMBER": "7",
            "GITHUB_RUN_ID": "not-a-number",
        }
    )

    assert context.event_name == "issue_comment"
    assert context.actor == "alice"
    assert context.sha == "abc"
    assert context.run_number == 7
    assert context.run_id == 10
    assert context.api_url == "https://api.github.com"
    assert context.payload["action"] == "created"


def test_from_env_defaults_without_variables() -> None:
    context = ActionContext.from_env({})

    assert context.event_name == "undefined"
    assert context.payload == {}
    assert context.issue_comment_event() is None


def test_missing_or_invalid_event_file_logs_warning(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    configure_logging(verbose=True)
    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")

    missing = ActionContext.from_env({"GITHUB_EVENT_PATH": str(tmp_path / "missing.json")})
    invalid = ActionContext.from_env({"GITHUB_EVENT_PATH": str(bad)})

    assert missing.payload == {}
    assert invalid.payload == {}
    stderr = capsys.readouterr().err
    assert "event=event_payload_unreadable" in stderr
    assert "event=event_payload_invalid" in stderr


def test_issue_comment_event_extracts_fields() -> None:
    context = ActionContext(event_name="issue_comment", payload=_comment_payload())

    assert context.issue_comment_event() == IssueCommentEvent(
        action="created",
        owner="acme",
        repo="widgets",
        issue_number=42,
        is_pull_request=True,
        comment_body="/cherry-pick release-1.2",
        comment_author="alice",
        author_association="MEMBER",
    )


def test_issue_comment_event_plain_issue_is_not_pull_request() -> None:
    context = ActionContext(
        event_name="issue_comment", payload=_comment_payload(issue={"number": 3})
    )

    event = context.issue_comment_event()

    assert event is not None
    assert event.is_pull_request is False


@pytest.mark.parametrize(
    "event_name,payload",
    [
        ("pull_request", _comment_payload()),
        ("issue_comment", _comment_payload(comment=None)),
        ("issue_comment", _comment_payload(issue={"number": "42"})),
    ],
)
def test_issue_comment_event_rejects_other_shapes(
    event_name: str, payload: dict[str, object]
) -> None:
    assert ActionContext(event_name=event_name, payload=payload).issue_comment_event() is None


def test_load_context_runs_off_loop(tmp_path: Path) -> None:
    event_path = _write_event(tmp_path, _comment_payload())

    context = asyncio.run(
        load_context({"GITHUB_EVENT_NAME": "issue_comment", "GITHUB_EVENT_PATH": str(event_path)})
    )

    assert context.issue_comment_event() is not None
