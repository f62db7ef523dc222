"""Base model for data exchanged with the model and written to run artifacts."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Snake_case in Python, camelCase on the wire.

    Model output and persisted artifacts use camelCase keys; either spelling
    is accepted on input.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        """Dump with camelCase keys for JSON artifacts and prompts."""
        return self.model_dump(by_alias=True, mode="json")
