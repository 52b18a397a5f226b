"""JSON column helpers."""

from __future__ import annotations

import json


def dumps(payload: object) -> str:
    # Finding texts are free-form and often non-English; keep them readable.
    return json.dumps(payload, ensure_ascii=False)


def loads_or_none(value: str | None) -> object | None:
    if value is None or value == "":
        return None
    return json.loads(value)
