"""
schemas/persona.py
------------------
Persona records as shown to the client. Prompts, the profile document and
its summary stay server-side.
"""

from typing import Optional

from pydantic import BaseModel, Field

from bubblechat.schemas.chat import RequestModel


class PersonaFilter(RequestModel):
    id: Optional[str] = Field(default=None, max_length=64)


class PersonaRead(BaseModel):
    id: str
    name: str
    caption: Optional[str] = None
    image_url: Optional[str] = None
    default_message: Optional[str] = None
    is_premium: bool = False

    model_config = {"from_attributes": True}


class PersonaListResponse(BaseModel):
    data: list[PersonaRead]
    new_token: Optional[str] = None
