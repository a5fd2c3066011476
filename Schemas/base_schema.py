# Schemas/base_schema.py
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RequestModel(CamelModel):
    # unknown fields (role, tokenVersion, ...) are rejected instead of ignored
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


def dump(model: BaseModel) -> dict:
    return model.model_dump(by_alias=True, mode="json")
