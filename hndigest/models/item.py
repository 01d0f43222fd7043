from pydantic import BaseModel, ConfigDict, Field, field_validator


class Item(BaseModel):
    """A fetched story. Accepts Algolia field names (objectID, points) or our own."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="objectID", min_length=1)
    title: str = ""
    url: str | None = None
    score: int = Field(alias="points")
    created_at: str

    @field_validator("title", mode="before")
    @classmethod
    def _null_title(cls, v):
        return v or ""
