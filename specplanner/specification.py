"""Specification parsing and deterministic plan ids."""

from __future__ import annotations

import json
from typing import Any, Mapping

from pydantic import ValidationError

from specplanner.errors import AppError, AppErrorCode
from specplanner.schemas import Specification
from specplanner.validation import describe_validation_issues

_FNV_OFFSET_BASIS = 0xCBF29CE484222325
_FNV_PRIME = 0x100000001B3
_MASK_64 = 0xFFFFFFFFFFFFFFFF


def parse_specification(data: Any) -> Specification | AppError:
    """Validate an already-decoded specification document.

    Decoding YAML/JSON from disk belongs to the caller; this only checks the
    shape and normalizes whitespace.
    """
    if not isinstance(data, Mapping):
        return AppError(AppErrorCode.VALIDATION_ERROR, 'Specification must be a mapping')
    try:
        return Specification.model_validate(dict(data))
    except ValidationError as exc:
        return AppError(
            AppErrorCode.VALIDATION_ERROR,
            f'Invalid specification: {describe_validation_issues(exc)}',
            exc.errors(include_url=False),
        )


def canonical_spec_json(spec: Specification) -> str:
    """Serialize a specification with sorted keys and no insignificant whitespace.

    Two specifications with the same content produce the same string regardless
    of the key order they were built from.
    """
    payload = spec.model_dump(mode='json', exclude_none=True)
    return json.dumps(payload, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def fnv1a_64(data: bytes) -> int:
    value = _FNV_OFFSET_BASIS
    for byte in data:
        value ^= byte
        value = (value * _FNV_PRIME) & _MASK_64
    return value


def generate_spec_id(spec: Specification) -> str:
    """Derive a stable plan id from the specification content.

    Used only as a fallback when the model's plan omits an id, so re-planning an
    unchanged specification reproduces the same id.
    """
    digest = fnv1a_64(canonical_spec_json(spec).encode('utf-8'))
    return f'plan-{digest:016x}'
