# models/weather.py
from pydantic import BaseModel


class WeatherSnapshot(BaseModel):
    """Current weather for a city. Never persisted."""
    temperature: float  # Celsius
    humidity: int  # percent
    description: str
