"""
CARTOPS - API request bodies
"""

from pydantic import BaseModel, Field


class TranscriptRequest(BaseModel):
    """Voice transcript dictated by the operator."""
    transcript: str = Field(..., min_length=1)


class ManualEntryRequest(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class CollectedRequest(BaseModel):
    product_ids: list[str] = Field(default_factory=list)


class FrameUploadRequest(BaseModel):
    """One camera frame, base64 encoded (data-URL prefix allowed)."""
    image_base64: str = Field(..., min_length=1)
    mime_type: str = "image/jpeg"
