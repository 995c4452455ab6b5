from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from sprint_scheduler.core.errors import SprintLoadError


TOP_LEVEL_KEYS = ("schema_version", "sprint", "users", "tasks", "worklogs", "settings")
LIST_SECTIONS = ("users", "worklogs")


def load_sprint(path: str) -> dict[str, Any]:
    """Load a YAML/JSON sprint document.

    Returns a dict with keys: schema_version, sprint, users, tasks, worklogs, settings.
    Optional sections are normalized (missing or empty users/worklogs -> [],
    settings -> {}; users given as a mapping keyed by id -> a list). Field types
    are left alone; validator owns shape checking.
    """

    p = Path(path)
    if not p.exists():
        raise SprintLoadError(code="E_FILE_NOT_FOUND", message="file does not exist", file=str(p))

    data = _parse(p)
    if not isinstance(data, dict):
        raise SprintLoadError(
            code="E_INVALID_TOP_LEVEL",
            message="top-level document must be a mapping/object",
            file=str(p),
        )

    out: dict[str, Any] = {k: data.get(k) for k in TOP_LEVEL_KEYS}
    for key in LIST_SECTIONS:
        if out[key] is None:
            out[key] = []
    if out["settings"] is None:
        out["settings"] = {}
    if isinstance(out["users"], dict):
        out["users"] = [_user_entry(uid, u) for uid, u in out["users"].items()]

    out["__file__"] = str(p)
    return out


def _parse(p: Path) -> Any:
    suffix = p.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        loads, code = yaml.safe_load, "E_YAML_PARSE"
    elif suffix == ".json":
        loads, code = json.loads, "E_JSON_PARSE"
    else:
        raise SprintLoadError(
            code="E_UNSUPPORTED_FORMAT",
            message="supported formats are .yaml/.yml and .json",
            file=str(p),
        )

    try:
        return loads(p.read_text(encoding="utf-8"))
    except (yaml.YAMLError, ValueError) as e:
        raise SprintLoadError(code=code, message=str(e), file=str(p)) from e


def _user_entry(uid: Any, user: Any) -> Any:
    # `users: {alice: {...}}` is shorthand for `users: [{id: alice, ...}]`
    if user is None:
        return {"id": uid}
    if isinstance(user, dict):
        return {**user, "id": uid}
    return user
