"""Strict schema baselines with forbidden extras by default."""

from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from ..core.exceptions import ValidationException

M = TypeVar("M", bound=BaseModel)


class StrictModel(BaseModel):
    """Neutral strict base for response DTOs."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request DTO base that always forbids unexpected fields."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)


def validate_request(model: Type[M], **data: Any) -> M:
    """Build a request DTO, translating pydantic errors into ValidationException."""
    try:
        return model(**data)
    except ValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        message = errors[0]["message"] if errors else "Invalid request"
        raise ValidationException(
            f"Invalid {model.__name__}: {message}",
            code="VALIDATION_ERROR",
            details={"errors": errors},
        ) from exc
