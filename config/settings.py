"""
Verdant Store - Centralized Configuration
==========================================
All environment variables and constants are loaded here.
No other module should call os.getenv() directly.

Provider credentials are bundled into frozen config objects at the bottom of
this file; services receive those objects through their constructors.
"""

import os
import sys
from dataclasses import dataclass
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv()


# ==========================================
# 🗄️ Database
# ==========================================
DATABASE_URL = os.getenv("DATABASE_URL", "")

if not DATABASE_URL:
    DB_USER = os.getenv("DB_USER")
    DB_PASSWORD = os.getenv("DB_PASSWORD")
    DB_HOST = os.getenv("DB_HOST", "localhost")
    DB_PORT = os.getenv("DB_PORT", "5432")
    DB_NAME = os.getenv("DB_NAME")

    if not all([DB_USER, DB_PASSWORD, DB_HOST, DB_NAME]):
        print("[ERROR] Critical: Database config missing in .env (DATABASE_URL or DB_USER, DB_PASSWORD, DB_HOST, DB_NAME)")
        sys.exit(1)

    DATABASE_URL = f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"


# ==========================================
# 🔐 Security
# ==========================================
SECRET_KEY = os.getenv("SECRET_KEY")

if not SECRET_KEY:
    print("[ERROR] Critical: SECRET_KEY missing in .env")
    sys.exit(1)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

COOKIE_SECURE = os.getenv("COOKIE_SECURE", "false").lower() == "true"
COOKIE_SAMESITE = os.getenv("COOKIE_SAMESITE", "lax")
CART_COOKIE_NAME = "verdant_cart"


# ==========================================
# 💳 Payment Gateways
# ==========================================
# Stripe (gateway A: synchronous confirm)
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_PAYMENT_METHOD = os.getenv("STRIPE_PAYMENT_METHOD", "pm_card_visa")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

# Razorpay (gateway B: asynchronous signed webhook)
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "")
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "")
RAZORPAY_CURRENCY = os.getenv("RAZORPAY_CURRENCY", "INR")


# ==========================================
# 🚚 Carrier (Delhivery)
# ==========================================
DELHIVERY_ENV = os.getenv("DELHIVERY_ENV", "production")
DELHIVERY_TOKEN = os.getenv("DELHIVERY_TOKEN", "")
DELHIVERY_PICKUP_LOCATION = os.getenv("DELHIVERY_PICKUP_LOCATION", "DEFAULT_WAREHOUSE")
DELHIVERY_PICKUP_ADDRESS = os.getenv("DELHIVERY_PICKUP_ADDRESS", "")
DELHIVERY_PICKUP_PIN = os.getenv("DELHIVERY_PICKUP_PIN", "")
DELHIVERY_PICKUP_PHONE = os.getenv("DELHIVERY_PICKUP_PHONE", "")
DELHIVERY_PICKUP_CITY = os.getenv("DELHIVERY_PICKUP_CITY", "")
DELHIVERY_PICKUP_STATE = os.getenv("DELHIVERY_PICKUP_STATE", "")


# ==========================================
# 🧮 Pricing
# ==========================================
FREE_SHIPPING_THRESHOLD = Decimal(os.getenv("FREE_SHIPPING_THRESHOLD", "999"))
FLAT_SHIPPING_FEE = Decimal(os.getenv("FLAT_SHIPPING_FEE", "99"))
TOTALS_EPSILON = Decimal("0.01")


# ==========================================
# 🔧 App
# ==========================================
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "15"))


# ==========================================
# 📦 Config bundles (passed into constructors)
# ==========================================

@dataclass(frozen=True)
class PricingConfig:
    free_shipping_threshold: Decimal = Decimal("999")
    flat_shipping_fee: Decimal = Decimal("99")
    totals_epsilon: Decimal = Decimal("0.01")


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str = ""
    payment_method: str = "pm_card_visa"
    currency: str = "usd"
    timeout: float = 15.0

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)


@dataclass(frozen=True)
class RazorpayConfig:
    key_id: str = ""
    key_secret: str = ""
    webhook_secret: str = ""
    currency: str = "INR"
    timeout: float = 15.0

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)


@dataclass(frozen=True)
class CarrierConfig:
    token: str = ""
    env: str = "production"
    pickup_name: str = "DEFAULT_WAREHOUSE"
    pickup_address: str = ""
    pickup_pin: str = ""
    pickup_phone: str = ""
    pickup_city: str = ""
    pickup_state: str = ""
    timeout: float = 15.0

    @property
    def api_base(self) -> str:
        if self.env == "staging":
            return "https://staging-express.delhivery.com"
        return "https://track.delhivery.com"

    @property
    def is_configured(self) -> bool:
        return bool(self.token)


def pricing_config() -> PricingConfig:
    return PricingConfig(
        free_shipping_threshold=FREE_SHIPPING_THRESHOLD,
        flat_shipping_fee=FLAT_SHIPPING_FEE,
        totals_epsilon=TOTALS_EPSILON,
    )


def stripe_config() -> StripeConfig:
    return StripeConfig(
        secret_key=STRIPE_SECRET_KEY,
        payment_method=STRIPE_PAYMENT_METHOD,
        currency=STRIPE_CURRENCY,
        timeout=HTTP_TIMEOUT_SECONDS,
    )


def razorpay_config() -> RazorpayConfig:
    return RazorpayConfig(
        key_id=RAZORPAY_KEY_ID,
        key_secret=RAZORPAY_KEY_SECRET,
        webhook_secret=RAZORPAY_WEBHOOK_SECRET,
        currency=RAZORPAY_CURRENCY,
        timeout=HTTP_TIMEOUT_SECONDS,
    )


def carrier_config() -> CarrierConfig:
    return CarrierConfig(
        token=DELHIVERY_TOKEN,
        env=DELHIVERY_ENV,
        pickup_name=DELHIVERY_PICKUP_LOCATION,
        pickup_address=DELHIVERY_PICKUP_ADDRESS,
        pickup_pin=DELHIVERY_PICKUP_PIN,
        pickup_phone=DELHIVERY_PICKUP_PHONE,
        pickup_city=DELHIVERY_PICKUP_CITY,
        pickup_state=DELHIVERY_PICKUP_STATE,
        timeout=HTTP_TIMEOUT_SECONDS,
    )
