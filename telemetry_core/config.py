# config.py
import os

# Store
MONGO_URI = os.getenv("MONGO_URI")
DB_NAME = os.getenv("DB_NAME", "device_telemetry")

# Collections (one per signal, append-only except users)
USERS_COLLECTION = "users"
CONSENT_COLLECTION = "consent_logs"
LOCATIONS_COLLECTION = "device_locations"
CALLS_COLLECTION = "call_logs"
IP_LOCATIONS_COLLECTION = "ip_locations"

# IP geolocation provider
IPINFO_TOKEN = os.getenv("IPINFO_TOKEN") or None
IPINFO_BASE_URL = os.getenv("IPINFO_BASE_URL", "https://ipinfo.io")

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("PORT", os.getenv("API_PORT", "3000")))
MAX_BODY_BYTES = 200 * 1024  # 200kb

# Admin aggregation caps
ADMIN_USER_LIMIT = 200
ADMIN_CALL_LIMIT = 10

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
