"""
Subscription lifecycle (double opt-in).

States: Unconfirmed --confirm--> Confirmed; either state --unsubscribe--> deleted.

- subscribe(email, city, frequency)
    city must resolve through the weather cache, else InvalidInput.
    (email, city) confirmed      -> Conflict
    (email, city) unconfirmed    -> new tokens + frequency, resend confirmation
    new                          -> insert unconfirmed, send confirmation
- confirm(token)     -> ConfirmResult.CONFIRMED | ConfirmResult.ALREADY_CONFIRMED
- unsubscribe(token) -> removed Subscription

Store errors surface as InternalFailure and stop the flow before any email
is sent.
"""
import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Dict, List, Tuple

from core.errors import Conflict, InternalFailure, InvalidInput, NotFound, StoreFailure
from models.subscription import ConfirmResult, Frequency, Subscription

logger = logging.getLogger(__name__)


def _new_token_pair() -> Tuple[str, str]:
    # uuid4 draws from os.urandom; the pair must never share a value
    confirmation_token = str(uuid.uuid4())
    unsubscribe_token = str(uuid.uuid4())
    while unsubscribe_token == confirmation_token:
        unsubscribe_token = str(uuid.uuid4())
    return confirmation_token, unsubscribe_token


class SubscriptionService:
    def __init__(self, store, weather_cache, notification_service):
        self.store = store
        self.weather_cache = weather_cache
        self.notification_service = notification_service
        # (email, city) -> [lock, number of holders/waiters]
        self._key_locks: Dict[Tuple[str, str], List] = {}

    @asynccontextmanager
    async def _locked(self, email: str, city: str):
        """Serialize subscribe calls for the same (email, city) in this process."""
        key = (email, city)
        slot = self._key_locks.setdefault(key, [asyncio.Lock(), 0])
        slot[1] += 1
        try:
            async with slot[0]:
                yield
        finally:
            slot[1] -= 1
            if slot[1] == 0:
                del self._key_locks[key]

    async def subscribe(self, email: str, city: str, frequency: Frequency) -> Subscription:
        try:
            frequency = Frequency(frequency)
        except ValueError:
            raise InvalidInput("Invalid frequency") from None
        logger.info(
            'Subscription request received for email="%s", city="%s", frequency="%s"',
            email, city, frequency.value,
        )

        try:
            await self.weather_cache.resolve(city)
        except Exception as e:
            logger.warning('Invalid city in subscription request: "%s" (%s)', city, e)
            raise InvalidInput("Invalid city name") from None

        async with self._locked(email, city):
            existing = await self._lookup(self.store.find_by_email_and_city(email, city))

            if existing is not None and existing.confirmed:
                logger.warning('Subscription already exists and confirmed for email="%s", city="%s"', email, city)
                raise Conflict("Subscription already exists for this email and city")

            confirmation_token, unsubscribe_token = _new_token_pair()
            if existing is not None:
                logger.info(
                    'Subscription exists but not confirmed for email="%s", city="%s". Resending confirmation email.',
                    email, city,
                )
                subscription = existing.model_copy(update={
                    "confirmation_token": confirmation_token,
                    "unsubscribe_token": unsubscribe_token,
                    "frequency": frequency,
                })
            else:
                subscription = Subscription(
                    id=str(uuid.uuid4()),
                    email=email,
                    city=city,
                    frequency=frequency,
                    confirmed=False,
                    confirmation_token=confirmation_token,
                    unsubscribe_token=unsubscribe_token,
                )

            try:
                saved = await self.store.save(subscription)
            except StoreFailure as e:
                logger.error("Failed to save subscription for %s (%s): %s", email, city, e)
                raise InternalFailure("Failed to save subscription") from e
            logger.info("Saved subscription for %s (%s, %s)", email, city, frequency.value)

        await self.notification_service.send_confirmation(saved.email, saved.confirmation_token)
        return saved

    async def confirm(self, token: str) -> ConfirmResult:
        if not token or not isinstance(token, str):
            logger.warning("Confirm subscription failed: invalid token provided")
            raise InvalidInput("Invalid token")

        subscription = await self._lookup(self.store.find_by_confirmation_token(token))
        if subscription is None:
            logger.warning("Confirm subscription failed: token not found (%s)", token)
            raise NotFound("Token not found")

        if subscription.confirmed:
            logger.info('Subscription already confirmed for email="%s"', subscription.email)
            return ConfirmResult.ALREADY_CONFIRMED

        subscription.confirmed = True
        try:
            await self.store.save(subscription)
        except StoreFailure as e:
            logger.error("Failed to confirm subscription %s: %s", subscription.id, e)
            raise InternalFailure("Failed to confirm subscription") from e

        logger.info('Subscription confirmed for email="%s", city="%s"', subscription.email, subscription.city)
        return ConfirmResult.CONFIRMED

    async def unsubscribe(self, token: str) -> Subscription:
        if not token or not isinstance(token, str):
            logger.warning("Unsubscribe failed: invalid token")
            raise InvalidInput("Invalid token")

        subscription = await self._lookup(self.store.find_by_unsubscribe_token(token))
        if subscription is None:
            logger.warning("Unsubscribe failed: token not found (%s)", token)
            raise NotFound("Token not found")

        try:
            await self.store.remove(subscription)
        except StoreFailure as e:
            logger.error("Failed to remove subscription %s: %s", subscription.id, e)
            raise InternalFailure("Failed to remove subscription") from e

        logger.info("Unsubscribed %s from %s", subscription.email, subscription.city)
        return subscription

    @staticmethod
    async def _lookup(query):
        try:
            return await query
        except StoreFailure as e:
            raise InternalFailure("Failed to look up subscription") from e
