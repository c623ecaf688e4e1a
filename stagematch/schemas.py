"""
Pydantic schemas for search criteria and the HTTP request body.
"""
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import EducationTrack

LOCATION_MIN_LENGTH = 2
LOCATION_MAX_LENGTH = 100
RADIUS_MIN_KM = 5
RADIUS_MAX_KM = 100


class SearchCriteria(BaseModel):
    """Validated search input, checked before any rate limit or cache work."""

    model_config = ConfigDict(populate_by_name=True)

    education: EducationTrack
    location: str = Field(min_length=LOCATION_MIN_LENGTH, max_length=LOCATION_MAX_LENGTH)
    radius_km: int = Field(alias="radiusKm", ge=RADIUS_MIN_KM, le=RADIUS_MAX_KM)

    @field_validator("education", mode="before")
    @classmethod
    def _parse_track(cls, value):
        return EducationTrack.parse(value)

    @field_validator("location", mode="before")
    @classmethod
    def _trim_location(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value


def parse_criteria(raw: Union[SearchCriteria, Mapping[str, Any]]) -> SearchCriteria:
    """
    Validate raw criteria.

    Raises:
        ValidationError: With one {"field", "message"} item per problem
    """
    if isinstance(raw, SearchCriteria):
        return raw
    try:
        return SearchCriteria.model_validate(raw)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid search criteria", errors=errors) from e


class SearchRequest(BaseModel):
    """Request body for the search endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    education: str
    location: str
    radius_km: int = Field(alias="radiusKm")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
