import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)


class Settings:
    def __init__(self):
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./cleardrip.db")
        self.JWT_SECRET = os.getenv("JWT_SECRET")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

        # Razorpay
        self.RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
        self.RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")
        self.RAZORPAY_TIMEOUT = float(os.getenv("RAZORPAY_TIMEOUT", "10"))
        self.PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "INR")

        # Email queue
        self.REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
        self.EMAIL_QUEUE_NAME = os.getenv("EMAIL_QUEUE_NAME", "emailQueue")
        self.EMAIL_JOB_ATTEMPTS = int(os.getenv("EMAIL_JOB_ATTEMPTS", "3"))
        self.EMAIL_JOB_BACKOFF_MS = int(os.getenv("EMAIL_JOB_BACKOFF_MS", "1000"))

        # SMTP (worker only)
        self.SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USER = os.getenv("SMTP_USER")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
        self.SMTP_STARTTLS = os.getenv("SMTP_STARTTLS", "true").lower() == "true"
        self.MAIL_FROM = os.getenv("MAIL_FROM", "ClearDrip <no-reply@cleardrip.in>")


@lru_cache
def get_settings() -> Settings:
    return Settings()
