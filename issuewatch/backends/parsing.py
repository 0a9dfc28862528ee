"""Narrow JSON extraction for free-form model output."""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import BackendResponseError

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json(text: str) -> Dict[str, Any]:
    """Return the JSON object embedded in ``text``.

    Code fences are unwrapped first; then the outermost ``{...}`` span is
    decoded. Anything else raises :class:`BackendResponseError`.
    """

    if not text or not text.strip():
        raise BackendResponseError("empty response")
    fenced = _FENCE_RE.search(text)
    body = fenced.group(1) if fenced else text
    start = body.find("{")
    end = body.rfind("}")
    if start == -1 or end <= start:
        raise BackendResponseError("no JSON object in response")
    try:
        payload = json.loads(body[start : end + 1])
    except json.JSONDecodeError as exc:
        raise BackendResponseError(f"invalid JSON in response: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise BackendResponseError("response JSON is not an object")
    return payload


def parse_response(text: str, model: Type[T]) -> T:
    payload = extract_json(text)
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
        raise BackendResponseError(
            f"{model.__name__} failed validation ({fields})"
        ) from exc
