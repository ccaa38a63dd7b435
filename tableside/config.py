from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "true") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME = os.getenv("DATABASE_NAME", "tableside")

    # Takeaway carts use the flat rate; dine-in tax is applied once on the
    # combined personal + group subtotal.
    TAX_RATE = float(os.getenv("TAX_RATE", "0.10"))
    DINE_IN_TAX_RATE = float(os.getenv("DINE_IN_TAX_RATE", "0.0"))

    GROUP_ORDER_TTL_MINUTES = int(os.getenv("GROUP_ORDER_TTL_MINUTES", "120"))

    # Pickup window, HH:MM local time
    PICKUP_OPEN = os.getenv("PICKUP_OPEN", "11:00")
    PICKUP_CLOSE = os.getenv("PICKUP_CLOSE", "21:30")
    PICKUP_SLOT_MINUTES = int(os.getenv("PICKUP_SLOT_MINUTES", "30"))
    PICKUP_SLOT_CAPACITY = int(os.getenv("PICKUP_SLOT_CAPACITY", "5"))
    PICKUP_LEAD_MINUTES = int(os.getenv("PICKUP_LEAD_MINUTES", "15"))

    DEFAULT_PREP_MINUTES = int(os.getenv("DEFAULT_PREP_MINUTES", "15"))
    POPULAR_ITEMS_LIMIT = int(os.getenv("POPULAR_ITEMS_LIMIT", "6"))
    TAKEAWAY_ENABLED = _flag("TAKEAWAY_ENABLED")

    RESTAURANT_TZ = os.getenv("RESTAURANT_TZ", "UTC")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
