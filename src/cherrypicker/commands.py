from __future__ import annotations

from collections.abc import Iterable
import re


_CHERRY_PICK_RE = re.compile(r"^(?:/cherrypick|/cherry-pick)\s+(.+)$", re.MULTILINE)
_CHERRY_PICK_INVITE_RE = re.compile(r"^(?:/cherrypick|/cherry-pick)-invite\b", re.MULTILINE)


def match_cherry_pick_command(text: str) -> tuple[str, ...]:
    """Return the target branches named by ``/cherry-pick <branch>`` lines, first seen first."""
    branches: dict[str, None] = {}
    for match in _CHERRY_PICK_RE.finditer(text):
        branch = match.group(1).strip()
        if branch:
            branches.setdefault(branch, None)
    return tuple(branches)


def is_cherry_pick_invite_command(text: str) -> bool:
    return _CHERRY_PICK_INVITE_RE.search(text) is not None


def match_label(label: str, prefix: str) -> str | None:
    if not prefix or not label.startswith(prefix):
        return None
    return label[len(prefix) :].strip()


def is_picked(labels: Iterable[str], target_branch: str, picked_label_prefix: str) -> bool:
    for label in labels:
        if not label.startswith(picked_label_prefix):
            continue
        if label[len(picked_label_prefix) :] == target_branch:
            return True
    return False


def normalize_branch(name: str) -> str:
    return name.replace("/", "-")
