# models/subscription.py
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Frequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class ConfirmResult(str, Enum):
    CONFIRMED = "Subscription confirmed successfully"
    ALREADY_CONFIRMED = "Subscription already confirmed"


class Subscription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    city: str
    frequency: Frequency
    confirmed: bool = False
    confirmation_token: str
    unsubscribe_token: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
