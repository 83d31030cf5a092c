from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes snake_case fields as camelCase for the client application."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)
