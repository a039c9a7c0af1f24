from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os


DEFAULT_LABEL_PREFIX = "needs-cherry-pick/"
DEFAULT_PICKED_LABEL_PREFIX = "cherry-picked/"


@dataclass(frozen=True)
class ActionConfig:
    # Everyone may trigger a cherry-pick, not only owners/members/collaborators.
    allow_all: bool = False
    create_issue_on_conflict: bool = False
    label_prefix: str = DEFAULT_LABEL_PREFIX
    picked_label_prefix: str = DEFAULT_PICKED_LABEL_PREFIX
    # Labels never copied over from the original pull request.
    exclude_labels: tuple[str, ...] = ()
    copy_issue_numbers_from_squashed_commit: bool = False


class ConfigError(ValueError):
    pass


def load_config(environ: Mapping[str, str] | None = None) -> ActionConfig:
    """Read the action inputs (``INPUT_<NAME>`` variables) into an ActionConfig."""
    env = os.environ if environ is None else environ
    return ActionConfig(
        allow_all=_bool_with_default(env, "allow-all", False),
        create_issue_on_conflict=_bool_with_default(env, "create-issue-on-conflict", False),
        label_prefix=_str_with_default(env, "label-prefix", DEFAULT_LABEL_PREFIX),
        picked_label_prefix=_str_with_default(
            env, "picked-label-prefix", DEFAULT_PICKED_LABEL_PREFIX
        ),
        exclude_labels=get_multiline_input(env, "exclude-labels"),
        copy_issue_numbers_from_squashed_commit=_bool_with_default(
            env, "copy-issue-numbers-from-squashed-commit", False
        ),
    )


def input_env_name(name: str) -> str:
    return f"INPUT_{name.replace(' ', '_').upper()}"


def get_input(env: Mapping[str, str], name: str) -> str | None:
    return env.get(input_env_name(name))


def get_input_required(env: Mapping[str, str], name: str) -> str:
    value = get_input(env, name)
    if value is None or not value.strip():
        raise ConfigError(f"Input required and not supplied: {name}")
    return value.strip()


def get_multiline_input(env: Mapping[str, str], name: str) -> tuple[str, ...]:
    value = get_input(env, name)
    if value is None:
        return ()
    return tuple(line.strip() for line in value.splitlines() if line.strip())


def _bool_with_default(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = get_input(env, name)
    if value is None or not value.strip():
        return default
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    raise ConfigError(f"{name} must be 'true' or 'false', got {value!r}")


def _str_with_default(env: Mapping[str, str], name: str, default: str) -> str:
    value = get_input(env, name)
    if value is None:
        return default
    return value.strip()
