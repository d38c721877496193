"""
Typed environment variables.

Each variable is declared once as an ``EnvVarSpec``; ``parse`` reads, converts
and type-checks it, ``validate`` checks a list of specs and logs every
problem it finds (secret values are never logged).
"""

import logging
import os
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

logger = logging.getLogger(__name__)


class EnvVarSpec(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    default: Optional[str] = None
    parse: Callable[[str], Any] = lambda x: x
    type: Tuple[Any, Any] = (str, ...)
    is_optional: bool = False
    is_secret: bool = False


class EnvVarError(ValueError):
    pass


def _display(spec: EnvVarSpec, raw: Optional[str]) -> str:
    if raw is None:
        return "<unset>"
    return "<redacted>" if spec.is_secret else repr(raw)


def parse(spec: EnvVarSpec) -> Any:
    """Return the converted value of ``spec``, or None if optional and unset."""
    raw = os.environ.get(spec.id)
    if raw is None or raw == "":
        raw = spec.default
    if raw is None:
        if spec.is_optional:
            return None
        raise EnvVarError(f"{spec.id} is required but not set")

    try:
        value = spec.parse(raw)
    except (TypeError, ValueError) as e:
        detail = "" if spec.is_secret else f": {e}"
        raise EnvVarError(f"{spec.id}={_display(spec, raw)} could not be parsed{detail}") from e

    checker = create_model(spec.id, value=spec.type)
    try:
        return checker(value=value).value
    except ValidationError as e:
        raise EnvVarError(
            f"{spec.id}={_display(spec, raw)} has the wrong type: {e.errors()[0]['msg']}"
        ) from e


def validate(specs: List[EnvVarSpec]) -> bool:
    ok = True
    for spec in specs:
        try:
            parse(spec)
        except EnvVarError as e:
            logger.error(str(e))
            ok = False
    return ok
