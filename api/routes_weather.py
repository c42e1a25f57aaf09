# api/routes_weather.py
from fastapi import APIRouter, Depends, Query

from core.response import ok
from core.singleton import get_weather_cache
from services.weather_cache import WeatherResolutionCache

router = APIRouter()

@router.get("/weather")
async def get_weather(
    city: str = Query(..., min_length=1, description="City name"),
    cache: WeatherResolutionCache = Depends(get_weather_cache),
):
    """
    Current weather for a city (served from the shared cache when fresh).

    - 400: provider rejected the request
    - 404: city not found
    - 500: provider error or timeout
    """
    snapshot = await cache.resolve(city)
    return ok(snapshot.model_dump())
