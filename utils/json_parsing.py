"""
Defensive parsing of judge responses.

Judges are asked for JSON, but models wrap it in code fences, prepend
prose, or ignore the format altogether. Parsing goes:
fence stripping -> whole-text JSON -> embedded JSON -> schema validation,
with an integer regex as the last-resort path for index selections.
"""

import json
import re
from typing import Any, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from core import JudgeResponseParseError

ModelT = TypeVar("ModelT", bound=BaseModel)

_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*|\s*```$")
_OBJECT_RE = re.compile(r"(\{.*\})", re.DOTALL)
_ARRAY_RE = re.compile(r"(\[.*?\])", re.DOTALL)
_INT_RE = re.compile(r"\b(\d+)\b")


def strip_code_fences(text: str) -> str:
    """Remove a surrounding ```json ... ``` wrapper if present."""
    return _FENCE_RE.sub("", text.strip()).strip()


def extract_json(text: str, operation: str = "judge") -> Any:
    """
    Pull the first JSON value out of a judge response.

    Raises:
        JudgeResponseParseError: no parseable JSON object or array found
    """
    cleaned = strip_code_fences(text)
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass

    for pattern in (_OBJECT_RE, _ARRAY_RE):
        match = pattern.search(cleaned)
        if match:
            try:
                return json.loads(match.group(1))
            except json.JSONDecodeError:
                continue

    raise JudgeResponseParseError(operation, text)


def parse_model(text: str, model_cls: Type[ModelT], operation: str = "judge") -> ModelT:
    """
    Parse a judge response into ``model_cls``.

    Raises:
        JudgeResponseParseError: not JSON, or JSON that fails schema validation
    """
    data = extract_json(text, operation)
    if not isinstance(data, dict):
        raise JudgeResponseParseError(operation, text)
    try:
        return model_cls.model_validate(data)
    except ValidationError as e:
        raise JudgeResponseParseError(operation, text) from e


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def extract_integers(text: str) -> List[int]:
    """Every standalone integer in ``text``, in order of appearance."""
    return [int(m) for m in _INT_RE.findall(text)]


def parse_index_selection(text: str, count: int, operation: str = "entry_selection") -> List[int]:
    """
    Parse 1-based selected indices from a judge response.

    Accepts ``{"selected": [...]}``, a bare ``[...]`` array, or, failing
    both, any integers in the text. An explicit empty array means nothing
    was selected. Indices outside ``[1, count]`` are dropped and duplicates
    removed, keeping first-seen order.
    """
    raw: Optional[List[Any]] = None
    try:
        data = extract_json(text, operation)
        if isinstance(data, dict):
            for key in ("selected", "selectedIndices", "indices"):
                if isinstance(data.get(key), list):
                    raw = data[key]
                    break
        elif isinstance(data, list):
            raw = data
    except JudgeResponseParseError:
        raw = None

    if raw is None:
        selected = [n for n in extract_integers(text) if 1 <= n <= count]
    else:
        candidates = [n for n in (_as_int(v) for v in raw) if n is not None]
        selected = [n for n in candidates if 1 <= n <= count]

    return list(dict.fromkeys(selected))
