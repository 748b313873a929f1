"""
Base schema with shared fields and methods.
"""

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel


class BaseResponseSchema(BaseModel):
    """
    Base for all response schemas.
    Serializes enums to their string values and uses camelCase keys,
    matching what the registration form sends and reads.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    @field_serializer("*")
    def serialize_enum(self, v):
        """Serialize enum fields to their string values."""
        if hasattr(v, "value"):
            return v.value
        return v
