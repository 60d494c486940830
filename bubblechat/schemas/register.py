"""
schemas/register.py
-------------------
Decoded registration profile and the credential handed back.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from bubblechat.schemas.chat import RequestModel


class RegisterRequest(RequestModel):
    phone: str = Field(..., min_length=3, max_length=32, examples=["+919812345678"])
    fcm_token: Optional[str] = Field(default=None, max_length=512)
    gender: Optional[str] = Field(default=None, max_length=32)
    age: Optional[int] = Field(default=None, ge=0, le=150)
    city: Optional[str] = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("city", "location"),
    )

    @field_validator("phone", mode="before")
    @classmethod
    def normalize_phone(cls, v):
        return str(v).strip() if v is not None else v


class RegisterResponse(BaseModel):
    success: bool = True
    app_key: str
    phone: str


class ReissueResponse(BaseModel):
    success: bool = True
    app_key: str
    message: str = "Token refreshed successfully"
