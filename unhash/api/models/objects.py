# unhash/api/models/objects.py
from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    """Response model for an upload, new (201) or duplicate (200)."""
    digest: str = Field(
        ...,
        description="SHA-256 of the uploaded bytes, 64 lowercase hex characters",
        example="e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )


class DiscoveryResponse(BaseModel):
    """Service discovery document served at /.well-known/unhash.json."""
    upload: str = Field(..., description="Absolute URL that accepts uploads")
