from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Snake-case attributes exposed as camelCase JSON, matching stored documents."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SuccessOut(ApiModel):
    success: bool = True
