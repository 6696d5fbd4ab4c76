from datetime import datetime

from pydantic import BaseModel, Field


class TurnRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    message: str = Field(..., max_length=2000)
    now: datetime | None = None


class TurnResponse(BaseModel):
    response: str
