from contextlib import asynccontextmanager

import redis
import structlog
from fastapi import FastAPI

from cleardrip.config import get_settings
from cleardrip.database import init_db
from cleardrip.errors import register_error_handlers
from cleardrip.logging_config import configure_logging
from cleardrip.notifications import EmailQueue
from cleardrip.razorpay_service import RazorpayClient
from cleardrip.routes import router

logger = structlog.get_logger(component="main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    init_db()

    redis_client = redis.Redis.from_url(settings.REDIS_URL)
    app.state.email_queue = EmailQueue(
        redis_client,
        name=settings.EMAIL_QUEUE_NAME,
        attempts=settings.EMAIL_JOB_ATTEMPTS,
        backoff_ms=settings.EMAIL_JOB_BACKOFF_MS,
    )
    app.state.gateway = RazorpayClient(
        settings.RAZORPAY_KEY_ID,
        settings.RAZORPAY_KEY_SECRET,
        timeout=settings.RAZORPAY_TIMEOUT,
        currency=settings.PAYMENT_CURRENCY,
    )
    logger.info("startup_complete")

    yield

    app.state.gateway.close()
    redis_client.close()
    logger.info("shutdown_complete")


app = FastAPI(title="ClearDrip Payment Service", lifespan=lifespan)

app.include_router(router)
register_error_handlers(app)
