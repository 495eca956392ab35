"""
Boundary decoding for generation backend output.

`decode_structured` never raises for bad payloads: it returns a tagged variant
(`Decoded` or `DecodeFailure`) so that each stage decides its own retry/abort
policy. Callers that want an exception use `DecodeFailure.to_error()`.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Generic, Literal, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from app.domain.exceptions import ValidationError

T = TypeVar("T", bound=BaseModel)

FailureReason = Literal["malformed_json", "schema_violation", "unexpected_payload"]

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")


@dataclass(frozen=True)
class Decoded(Generic[T]):
    value: T
    ok: Literal[True] = True


@dataclass(frozen=True)
class DecodeFailure:
    reason: FailureReason
    schema_name: str
    errors: list[dict[str, Any]] = field(default_factory=list)
    ok: Literal[False] = False

    def summary(self, limit: int = 3) -> str:
        if not self.errors:
            return self.reason
        parts = []
        for err in self.errors[:limit]:
            loc = ".".join(str(piece) for piece in err.get("loc", ()) if piece != "__root__")
            msg = str(err.get("msg") or "")
            parts.append(f"{loc}: {msg}" if loc else msg)
        extra = len(self.errors) - limit
        if extra > 0:
            parts.append(f"(+{extra} more)")
        return f"{self.reason}: " + "; ".join(parts)

    def to_error(self, message: Optional[str] = None) -> ValidationError:
        return ValidationError(
            message or f"{self.schema_name} failed validation ({self.summary()})",
            details={"reason": self.reason, "errors": self.errors},
        )


DecodeResult = Union[Decoded[T], DecodeFailure]


def strip_code_fences(text: str) -> str:
    stripped = (text or "").strip()
    match = _FENCE_RE.search(stripped)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return stripped


def _compact_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    compact: list[dict[str, Any]] = []
    for err in exc.errors(include_url=False, include_input=False):
        compact.append({"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")})
    return compact


def decode_structured(
    raw: Any,
    schema: Type[T],
    *,
    context: Optional[Mapping[str, Any]] = None,
) -> DecodeResult[T]:
    """
    Validate one backend payload against `schema`.

    Accepts an already-parsed model instance (re-validated so that contextual
    rules apply), a mapping, or raw JSON text (optionally wrapped in code fences).
    """
    name = schema.__name__
    payload: Any = raw

    if isinstance(raw, BaseModel):
        payload = raw.model_dump(mode="json")
    elif isinstance(raw, (bytes, bytearray)):
        payload = raw.decode("utf-8", errors="replace")

    if isinstance(payload, str):
        text = strip_code_fences(payload)
        if not text:
            return DecodeFailure(reason="malformed_json", schema_name=name, errors=[{"loc": [], "msg": "empty output"}])
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            return DecodeFailure(
                reason="malformed_json",
                schema_name=name,
                errors=[{"loc": [], "msg": f"{exc.msg} at position {exc.pos}"}],
            )

    if not isinstance(payload, Mapping):
        return DecodeFailure(
            reason="unexpected_payload",
            schema_name=name,
            errors=[{"loc": [], "msg": f"expected a JSON object, got {type(payload).__name__}"}],
        )

    try:
        value = schema.model_validate(dict(payload), context=dict(context) if context else None)
    except PydanticValidationError as exc:
        return DecodeFailure(reason="schema_violation", schema_name=name, errors=_compact_errors(exc))
    return Decoded(value=value)


def decode_or_raise(raw: Any, schema: Type[T], *, context: Optional[Mapping[str, Any]] = None) -> T:
    result = decode_structured(raw, schema, context=context)
    if isinstance(result, DecodeFailure):
        raise result.to_error()
    return result.value
