"""Validation of classifier output into a ``Classification``."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from dealflow.domain.errors import ClassificationUnavailable
from dealflow.domain.models import Classification


def parse_classification(raw: Classification | Mapping[str, Any] | None) -> Classification:
    """Validate a classifier result.

    Mappings are validated against ``Classification``: missing ``sentiment``,
    unknown enum values, and negative amounts are all rejected.

    Raises:
        ClassificationUnavailable: If *raw* is empty or malformed.
    """
    if isinstance(raw, Classification):
        return raw
    if not isinstance(raw, Mapping) or not raw:
        raise ClassificationUnavailable(f"classifier returned {type(raw).__name__}")
    try:
        return Classification.model_validate(dict(raw))
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise ClassificationUnavailable(f"malformed classification payload: {fields}") from exc
