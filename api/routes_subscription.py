# api/routes_subscription.py
from fastapi import APIRouter, Depends

from core.response import ok
from core.singleton import get_subscription_service
from models.schemas import SubscribeRequest
from services.subscription_service import SubscriptionService

router = APIRouter()

@router.post("/subscribe")
async def subscribe(
    payload: SubscribeRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    """
    Subscribe an email address to weather updates for a city.

    - 200 OK: subscription created (or unconfirmed one refreshed); confirmation email sent.
    - 400: city could not be resolved by the weather provider.
    - 409: a confirmed subscription already exists for this email and city.
    - 422: malformed email / frequency.
    """
    await service.subscribe(payload.email, payload.city, payload.frequency)
    return ok({"message": "Subscription created. Check your email to confirm."})

@router.get("/confirm/{token}")
async def confirm(token: str, service: SubscriptionService = Depends(get_subscription_service)):
    """Confirm a subscription from the emailed link; confirming twice is fine."""
    result = await service.confirm(token)
    return ok({"message": result.value})

@router.get("/unsubscribe/{token}")
async def unsubscribe(token: str, service: SubscriptionService = Depends(get_subscription_service)):
    """Delete the subscription the token belongs to."""
    await service.unsubscribe(token)
    return ok({"message": "Unsubscribed successfully"})
