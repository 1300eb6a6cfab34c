from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys (``mainContent``, ``pageCount`` …).

    Attributes stay snake_case in Python; either spelling is accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        """JSON-ready dict with camelCase keys; unset optional fields (``None``) are left out."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
