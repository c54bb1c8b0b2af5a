import os
from decimal import Decimal

# ---------------------------------------------------------------------------
# RabbitMQ
# ---------------------------------------------------------------------------
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "localhost")
RABBITMQ_PORT = int(os.getenv("RABBITMQ_PORT", 5672))
RABBITMQ_USER = os.getenv("RABBITMQ_USER", "guest")
RABBITMQ_PASSWORD = os.getenv("RABBITMQ_PASSWORD", "guest")
ORDER_QUEUE = os.getenv("ORDER_QUEUE", "orders")
RABBITMQ_CONNECT_RETRIES = int(os.getenv("RABBITMQ_CONNECT_RETRIES", 15))
RABBITMQ_CONNECT_DELAY = int(os.getenv("RABBITMQ_CONNECT_DELAY", 5))
CONSUMER_INACTIVITY_TIMEOUT = float(os.getenv("CONSUMER_INACTIVITY_TIMEOUT", "1.0"))

# ---------------------------------------------------------------------------
# MongoDB
# ---------------------------------------------------------------------------
MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DATABASE = os.getenv("MONGO_DATABASE", "orderdb")

# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------
PROMO_KEYWORD = os.getenv("PROMO_KEYWORD", "hello")
PROMO_DISCOUNT_RATE = Decimal(os.getenv("PROMO_DISCOUNT_RATE", "0.10"))
PRICING_DELAY_MS = int(os.getenv("PRICING_DELAY_MS", "0"))

# ---------------------------------------------------------------------------
# Process
# ---------------------------------------------------------------------------
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
RUN_EMBEDDED_WORKER = os.getenv("RUN_EMBEDDED_WORKER", "true").lower() in ("1", "true", "yes")
