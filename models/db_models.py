"""
SQLAlchemy ORM models for MySQL database.

Purpose:
- Define the subscriptions table
- Use SQLAlchemy async-compatible models
- Support migrations via Alembic

Production notes:
- (email, city) is unique: one subscription per address and city
- Both tokens are unique because they are used as lookup keys in links
"""

from sqlalchemy import Column, String, DateTime, Boolean, UniqueConstraint
from core.db import Base
from datetime import datetime


class Subscription(Base):
    """
    A weather forecast subscription.

    Columns:
    - id: opaque uuid4 string
    - email/city: subscriber address and free-form city name
    - frequency: "hourly" or "daily"
    - confirmed: set once the confirmation link is followed
    - confirmation_token/unsubscribe_token: random lookup keys used in email links
    - created_at/updated_at: audit timestamps
    """
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), nullable=False, index=True)
    city = Column(String(255), nullable=False)
    frequency = Column(String(16), nullable=False)
    confirmed = Column(Boolean, default=False, nullable=False)
    confirmation_token = Column(String(64), unique=True, nullable=False)
    unsubscribe_token = Column(String(64), unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("email", "city", name="ux_subscription_email_city"),
    )
