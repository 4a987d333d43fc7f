"""
Action Schema Validator — validates parameter bags before plugin code runs.

A schema is either a pydantic model class, a sequence of ParameterSpec
(compiled into a pydantic model that forbids extra fields), or None for
"no parameters". The same validator is used for integration config and
credentials.

Public API:
    validate_params(schema, params, context) → dict of coerced values
    resolve_model(schema)                    → pydantic model class
    describe_schema(schema)                  → list of field descriptors
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict, Field, create_model
from pydantic import ValidationError as PydanticValidationError

from conduit.connectors.errors import FieldError, ValidationError
from conduit.connectors.models import ParameterSpec

logger = logging.getLogger(__name__)


_TYPE_MAP: Dict[str, Any] = {
    "str": str,
    "int": int,
    "float": float,
    "bool": bool,
    "dict": Dict[str, Any],
    "list": List[Any],
    "list[str]": List[str],
    "list[int]": List[int],
    "any": Any,
}


class StrictParams(BaseModel):
    """Base for models compiled from ParameterSpec lists."""
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Schema resolution
# ---------------------------------------------------------------------------

def build_model(specs: Sequence[ParameterSpec], name: str = "Params") -> Type[BaseModel]:
    """Compile a ParameterSpec sequence into a pydantic model class."""
    fields: Dict[str, Any] = {}
    for spec in specs:
        spec.validate()
        annotation = _TYPE_MAP[spec.type]
        if spec.required:
            fields[spec.name] = (annotation, Field(..., description=spec.description))
        else:
            default = spec.default
            fields[spec.name] = (
                Optional[annotation],
                Field(default_factory=lambda d=default: copy.deepcopy(d), description=spec.description),
            )
    return create_model(name, __base__=StrictParams, **fields)


def resolve_model(schema: Any) -> Type[BaseModel]:
    """Return the pydantic model class for any supported schema form.

    Raises:
        TypeError: If ``schema`` is not a supported form
    """
    if schema is None:
        return build_model([])
    if isinstance(schema, type) and issubclass(schema, BaseModel):
        return schema
    if isinstance(schema, (list, tuple)) and all(isinstance(s, ParameterSpec) for s in schema):
        return build_model(schema)
    raise TypeError(f"Unsupported schema type: {type(schema).__name__}")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _field_errors(exc: PydanticValidationError) -> List[FieldError]:
    errors = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
        errors.append(FieldError(field=loc, message=err.get("msg", "invalid"), type=err.get("type", "value_error")))
    return errors


def validate_params(
    schema: Any,
    params: Optional[Mapping[str, Any]],
    context: str = "Parameter",
) -> Dict[str, Any]:
    """Validate ``params`` against ``schema``.

    Args:
        schema: pydantic model class, ParameterSpec sequence, or None
        params: Caller-supplied mapping (None is treated as empty)
        context: Label used in the error message ("Config", "Action 'x' params")

    Returns:
        The coerced values as a plain dict.

    Raises:
        ValidationError: Listing every violated field
    """
    if params is None:
        params = {}
    if not isinstance(params, Mapping):
        raise ValidationError(
            [FieldError("__root__", "expected a mapping of parameters", "type_error")],
            context=context,
        )

    model = resolve_model(schema)
    try:
        validated = model.model_validate(dict(params))
    except PydanticValidationError as exc:
        # pydantic's own message echoes input values; do not chain it
        raise ValidationError(_field_errors(exc), context=context) from None
    return validated.model_dump()


# ---------------------------------------------------------------------------
# Description
# ---------------------------------------------------------------------------

def _type_label(annotation: Any) -> str:
    return getattr(annotation, "__name__", None) or str(annotation).replace("typing.", "")


def describe_schema(schema: Any) -> List[Dict[str, Any]]:
    """Describe a schema as a JSON-friendly list of fields."""
    if schema is None:
        return []
    if isinstance(schema, (list, tuple)):
        return [
            {
                "name": s.name,
                "type": s.type,
                "required": s.required,
                "description": s.description,
                "default": s.default,
            }
            for s in schema
        ]
    model = resolve_model(schema)
    described = []
    for name, info in model.model_fields.items():
        required = info.is_required()
        described.append({
            "name": name,
            "type": _type_label(info.annotation),
            "required": required,
            "description": info.description or "",
            "default": None if required else info.get_default(call_default_factory=True),
        })
    return described
