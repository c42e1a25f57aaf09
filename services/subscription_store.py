"""
Subscription stores.

Two implementations of the same async interface:
- SubscriptionDBStore   -> async SQLAlchemy, one short-lived session per call
- InMemorySubscriptionStore -> dict-backed fallback for dev/tests when DB is disabled

Interface (used by SubscriptionService and ForecastDispatchScheduler):
- find_by_email_and_city(email, city) -> Subscription | None
- find_by_confirmation_token(token)   -> Subscription | None
- find_by_unsubscribe_token(token)    -> Subscription | None
- find_many(confirmed, frequency)     -> list[Subscription]
- save(subscription)                  -> Subscription (insert or update by id)
- remove(subscription)                -> None

Every persistence error is raised as core.errors.StoreFailure. Callers get
pydantic Subscription copies, never live ORM rows.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from core.errors import StoreFailure
from models.db_models import Subscription as SubscriptionRow
from models.subscription import Frequency, Subscription

logger = logging.getLogger(__name__)


class SubscriptionDBStore:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def find_by_email_and_city(self, email: str, city: str) -> Optional[Subscription]:
        return await self._find_one(SubscriptionRow.email == email, SubscriptionRow.city == city)

    async def find_by_confirmation_token(self, token: str) -> Optional[Subscription]:
        return await self._find_one(SubscriptionRow.confirmation_token == token)

    async def find_by_unsubscribe_token(self, token: str) -> Optional[Subscription]:
        return await self._find_one(SubscriptionRow.unsubscribe_token == token)

    async def find_many(self, confirmed: bool, frequency: Frequency) -> List[Subscription]:
        """
        Equivalent to:
        SELECT * FROM subscriptions WHERE confirmed = ? AND frequency = ? ORDER BY created_at
        """
        stmt = (
            select(SubscriptionRow)
            .where(SubscriptionRow.confirmed == confirmed)
            .where(SubscriptionRow.frequency == Frequency(frequency).value)
            .order_by(SubscriptionRow.created_at, SubscriptionRow.id)
        )
        async with self._session_maker() as session:
            try:
                result = await session.execute(stmt)
                rows = result.scalars().all()
            except SQLAlchemyError as e:
                logger.error("DB find_many error (confirmed=%s, frequency=%s): %s", confirmed, frequency, e)
                raise StoreFailure("Failed to load subscriptions") from e
        return [self._to_model(row) for row in rows]

    async def save(self, subscription: Subscription) -> Subscription:
        """Insert the subscription, or update the row with the same id."""
        async with self._session_maker() as session:
            try:
                row = await session.get(SubscriptionRow, subscription.id)
                if row is None:
                    row = SubscriptionRow(id=subscription.id)
                    session.add(row)
                row.email = subscription.email
                row.city = subscription.city
                row.frequency = Frequency(subscription.frequency).value
                row.confirmed = subscription.confirmed
                row.confirmation_token = subscription.confirmation_token
                row.unsubscribe_token = subscription.unsubscribe_token
                await session.commit()
                await session.refresh(row)
            except IntegrityError as e:
                await session.rollback()
                logger.warning("IntegrityError saving subscription %s (%s)", subscription.id, e)
                raise StoreFailure("Subscription violates a uniqueness constraint") from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("DB save error for subscription %s: %s", subscription.id, e)
                raise StoreFailure("Failed to save subscription") from e
            return self._to_model(row)

    async def remove(self, subscription: Subscription) -> None:
        """Hard delete; unsubscribed rows do not linger in the table."""
        async with self._session_maker() as session:
            try:
                await session.execute(delete(SubscriptionRow).where(SubscriptionRow.id == subscription.id))
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("DB remove error for subscription %s: %s", subscription.id, e)
                raise StoreFailure("Failed to remove subscription") from e

    async def _find_one(self, *criteria) -> Optional[Subscription]:
        async with self._session_maker() as session:
            try:
                result = await session.execute(select(SubscriptionRow).where(*criteria))
                row = result.scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error("DB lookup error: %s", e)
                raise StoreFailure("Failed to query subscriptions") from e
        return self._to_model(row) if row is not None else None

    @staticmethod
    def _to_model(row: SubscriptionRow) -> Subscription:
        return Subscription.model_validate(row)


class InMemorySubscriptionStore:
    """
    Process-local store used when the DB is disabled.
    Enforces the same uniqueness rules as the subscriptions table.
    """

    def __init__(self):
        self._rows: Dict[str, Subscription] = {}

    async def find_by_email_and_city(self, email: str, city: str) -> Optional[Subscription]:
        return self._find_one(lambda s: s.email == email and s.city == city)

    async def find_by_confirmation_token(self, token: str) -> Optional[Subscription]:
        return self._find_one(lambda s: s.confirmation_token == token)

    async def find_by_unsubscribe_token(self, token: str) -> Optional[Subscription]:
        return self._find_one(lambda s: s.unsubscribe_token == token)

    async def find_many(self, confirmed: bool, frequency: Frequency) -> List[Subscription]:
        frequency = Frequency(frequency)
        return [
            s.model_copy()
            for s in self._rows.values()
            if s.confirmed == confirmed and s.frequency == frequency
        ]

    async def save(self, subscription: Subscription) -> Subscription:
        for other in self._rows.values():
            if other.id == subscription.id:
                continue
            if (other.email, other.city) == (subscription.email, subscription.city):
                raise StoreFailure("Subscription violates a uniqueness constraint")
            tokens = {other.confirmation_token, other.unsubscribe_token}
            if subscription.confirmation_token in tokens or subscription.unsubscribe_token in tokens:
                raise StoreFailure("Subscription violates a uniqueness constraint")

        now = datetime.utcnow()
        previous = self._rows.get(subscription.id)
        stored = subscription.model_copy(update={
            "created_at": previous.created_at if previous else (subscription.created_at or now),
            "updated_at": now,
        })
        self._rows[subscription.id] = stored
        return stored.model_copy()

    async def remove(self, subscription: Subscription) -> None:
        self._rows.pop(subscription.id, None)

    def _find_one(self, predicate) -> Optional[Subscription]:
        for s in self._rows.values():
            if predicate(s):
                return s.model_copy()
        return None
