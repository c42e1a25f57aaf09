from pydantic import BaseModel, EmailStr, Field

from models.subscription import Frequency

class SubscribeRequest(BaseModel):
    email: EmailStr
    city: str = Field(..., min_length=1, max_length=255)
    frequency: Frequency

class MessageResponse(BaseModel):
    message: str
