from datetime import UTC, datetime
from decimal import Decimal
from typing import Literal
from uuid import uuid4

from pydantic import BaseModel, Field

# --- Enums / Literals ---
PostContentType = Literal["image", "video", "text", "mixed"]

# --- Content ---


class Post(BaseModel):
    """
    A creator-published post.

    Preview fields (title, description, thumbnail) are public; the full body
    (`full_content`, `full_content_url`) is released only when access is granted.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    creator_id: str
    creator_name: str
    title: str
    description: str
    price: Decimal = Field(gt=0)
    content_type: PostContentType = "text"
    thumbnail_url: str | None = None
    full_content: str
    full_content_url: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def preview(self) -> dict[str, object]:
        """Public fields only."""
        return self.model_dump(exclude={"full_content", "full_content_url"})
