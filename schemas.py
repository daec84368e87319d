# schemas.py
# Request bodies accepted by the HTTP API.

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class AnalyzeRequest(BaseModel):
    """Body of POST /api/analyze."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, description="Free-text defect description.")
    image_base64: Optional[str] = Field(None, description="Image bytes, base64 or data URL.")
    filename: Optional[str] = None


class ChatRequest(BaseModel):
    """Body of POST /api/chat."""
    message: str = ""


class UploadRequest(BaseModel):
    """Body of POST /api/upload."""
    model_config = ConfigDict(populate_by_name=True)

    filename: str = Field(..., min_length=1)
    content_type: Optional[str] = Field(None, alias="contentType")
    data: str = Field(..., min_length=1, description="Base64 file content.")


class LegacyRequest(BaseModel):
    """Body of POST /api/legacy (original single-purpose analyzer)."""
    defect: Optional[str] = None


def describe_validation_error(exc: ValidationError) -> str:
    """First offending field as `field: message`."""
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    field = ".".join(str(p) for p in first.get("loc", ())) or "body"
    if first.get("type") == "missing":
        return f"Missing required field: {field}"
    return f"Invalid field '{field}': {first.get('msg', 'invalid value')}"
