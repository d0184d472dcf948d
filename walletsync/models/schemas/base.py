"""
Base schemas used across the application.
"""
from pydantic import BaseModel, ConfigDict


class CamelModel(BaseModel):
    """Accepts both the camelCase wire keys and snake_case attribute names."""

    model_config = ConfigDict(populate_by_name=True)
