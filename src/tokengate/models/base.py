"""Common pydantic configuration for tokengate models."""

from pydantic import BaseModel, ConfigDict


class TokenGateBaseModel(BaseModel):
    """Frozen, closed-schema base for entities and response bodies.

    Registered clients and cached introspection verdicts are shared between
    requests, so instances cannot be mutated after validation. Unknown fields
    are rejected unless a model opts out (decoded claims and stored records
    tolerate extra keys).
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        validate_default=True,
    )
