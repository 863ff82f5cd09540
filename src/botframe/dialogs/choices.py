"""Choices offered by choice prompts."""

from __future__ import annotations

from pydantic import Field

from botframe.schema import CardAction, SchemaModel


class Choice(SchemaModel):
    """A choice for a choice prompt."""

    value: str | None = None
    # Action used when rendering the choice as a suggested action or hero card.
    action: CardAction | None = None
    # Extra phrases recognized in addition to the value.
    synonyms: list[str] | None = Field(default=None)

    def __init__(self, value: str | None = None, **data: object) -> None:
        super().__init__(value=value, **data)
