"""Base schema classes with camelCase alias generation.

File API payloads are camelCase on the wire (``originalName``,
``syncStatus``); Python code keeps snake_case field names.
"""
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies. Accepts camelCase or snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CamelORMModel(BaseModel):
    """Response bodies built from FileRecord rows, serialized as camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )
