"""Request body models."""

from pydantic import BaseModel, ConfigDict, Field


class TableCreate(BaseModel):
    """Body of POST /api/create-table."""

    model_config = ConfigDict(extra="ignore")

    tableName: str | None = Field(
        default=None, description="Name of the table to create"
    )
    c1Unique: bool = Field(
        default=False,
        description="Add a UNIQUE constraint to c1 instead of a plain index",
    )
