import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


class Settings(BaseModel):
    razorpay_key_id: Optional[str] = None
    razorpay_key_secret: Optional[str] = None
    razorpay_webhook_secret: Optional[str] = None
    currency: str = "INR"
    public_search_limit: int = Field(default=20, gt=0)
    log_level: str = "INFO"

    @property
    def gateway_configured(self) -> bool:
        return bool(self.razorpay_key_id and self.razorpay_key_secret)


@lru_cache
def get_settings() -> Settings:
    load_dotenv()
    return Settings(
        razorpay_key_id=os.getenv("RAZORPAY_KEY_ID"),
        razorpay_key_secret=os.getenv("RAZORPAY_KEY_SECRET"),
        razorpay_webhook_secret=os.getenv("RAZORPAY_WEBHOOK_SECRET"),
        currency=os.getenv("PAYMENT_CURRENCY", "INR"),
        public_search_limit=int(os.getenv("PUBLIC_SEARCH_LIMIT", "20")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
