"""
Main FastAPI application (entrypoint).

Responsibilities:
- Wire API routers (weather, subscription)
- Register centralized exception handlers
- Provide middleware: request-id logging
- Add health / debug endpoints
- On startup: create DB tables (dev convenience) and start the forecast scheduler
Notes:
- Run a single instance with SCHEDULER_ENABLED=true; several instances would each
  send every forecast. Alternatively disable it here and run workers.forecast_worker.
"""
import logging

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from api import routes_subscription, routes_weather
from config.settings import settings
from core import db
from core.exception_handlers import register_exception_handlers
from core.logging import configure_logging, request_logging_middleware
from core.response import ok
from core.singleton import forecast_scheduler, get_notification_service, weather_client

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.API_TITLE, version=settings.API_VERSION)

# CORS - adjust origins for production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes_weather.router, prefix="/api", tags=["weather"])
app.include_router(routes_subscription.router, prefix="/api", tags=["subscription"])

register_exception_handlers(app)

# Add request logging middleware (adds X-Request-ID header and logs)
app.middleware("http")(request_logging_middleware)

@app.get("/health")
async def health():
    """Simple health endpoint used by load balancers and orchestrators."""
    return ok({"status": "ok"})

@app.get("/notifications/recent")
async def recent_notifications(notifications=Depends(get_notification_service)):
    """Last 20 emails sent by this process (debug)."""
    return ok(notifications.recent_notifications())

@app.on_event("startup")
async def on_startup():
    """
    On startup:
    - Create DB tables (development convenience). In production use Alembic migrations instead.
    - Start the hourly/daily forecast triggers.
    """
    if db.db_enabled():
        try:
            await db.create_tables()
        except Exception as e:
            # Do not crash the process for missing DB during local dev; log for ops
            logger.warning("DB initialization failed on startup (ok for local dev): %s", e)
    if settings.SCHEDULER_ENABLED:
        forecast_scheduler.start()

@app.on_event("shutdown")
async def on_shutdown():
    await forecast_scheduler.shutdown()
    await weather_client.aclose()
    await db.dispose_engine()

if __name__ == "__main__":
    # Run with: python main.py for local dev. For production use uvicorn with a single worker.
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
