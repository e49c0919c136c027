from __future__ import annotations

from typing import Any


# Structured outcomes handed back to the model as tool results. These are data,
# not exceptions: the model decides how to phrase them for the user.

RESULT_KINDS = {
    "ok",
    "not_found",
    "quota_exceeded",
    "duplicate_warning",
    "validation_failure",
    "conflict",
}


def ok(**payload: Any) -> dict[str, Any]:
    return {"ok": True, "result": "ok", **payload}


def not_found(entity: str, entity_id: Any = None) -> dict[str, Any]:
    out: dict[str, Any] = {"ok": False, "result": "not_found", "entity": entity}
    if entity_id is not None:
        out["id"] = str(entity_id)
    return out


def quota_exceeded(resource: str, *, limit: int, current: int) -> dict[str, Any]:
    return {
        "ok": False,
        "result": "quota_exceeded",
        "resource": resource,
        "limit": int(limit),
        "current": int(current),
    }


def duplicate_warning(entity: str, *, name: str, existing_id: str) -> dict[str, Any]:
    return {
        "ok": False,
        "result": "duplicate_warning",
        "entity": entity,
        "name": name,
        "existing_id": existing_id,
        "hint": "Pass force=true to create it anyway.",
    }


def validation_failure(tool: str, errors: list[Any] | str) -> dict[str, Any]:
    return {"ok": False, "result": "validation_failure", "tool": tool, "errors": errors}


def conflict(reason: str, **details: Any) -> dict[str, Any]:
    return {"ok": False, "result": "conflict", "reason": reason, **details}


def result_kind(result: dict[str, Any]) -> str:
    kind = str(result.get("result") or "")
    return kind if kind in RESULT_KINDS else "unknown"
