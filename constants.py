import os

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 7890))
MAX_PORT_ATTEMPTS = int(os.getenv("MAX_PORT_ATTEMPTS", 10))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE", None)

# "memory" keeps fan-out in-process, "redis" relays it over Redis pub/sub
BROADCAST_BACKEND = os.getenv("BROADCAST_BACKEND", "memory").lower()

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)

CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()]

ADMIN_USERNAME = "Admin"
OWN_MESSAGE_LABEL = "You"
