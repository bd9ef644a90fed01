import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Storage
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "tucarrito")
MESSAGING_DATABASE_URL = os.getenv("MESSAGING_DATABASE_URL", DATABASE_URL)
MESSAGING_DATABASE_NAME = os.getenv("MESSAGING_DATABASE_NAME", DATABASE_NAME)

# JWT / Auth
SECRET_KEY = os.getenv("SECRET_KEY", "devsecretkey")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# Payments
COMMISSION_RATE = float(os.getenv("COMMISSION_RATE", 5))

# Simulated network/gateway delays; tests switch this off
SIMULATED_LATENCY = _flag("SIMULATED_LATENCY", "true")

# Images are stored as data URIs
MAX_IMAGE_SIZE = int(os.getenv("MAX_IMAGE_SIZE", 2 * 1024 * 1024))
ALLOWED_IMAGE_TYPES = ["image/jpeg", "image/jpg", "image/png", "image/webp"]
MAX_VEHICLE_IMAGES = 10

# Messaging polling cadence, in seconds
MESSAGE_POLL_INTERVAL = float(os.getenv("MESSAGE_POLL_INTERVAL", 3))
CONVERSATION_POLL_INTERVAL = float(os.getenv("CONVERSATION_POLL_INTERVAL", 5))

TEMP_VEHICLE_MAX_AGE_DAYS = int(os.getenv("TEMP_VEHICLE_MAX_AGE_DAYS", 30))
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA", "false")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
