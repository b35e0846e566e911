import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "inr")
THEME_COLOR = os.getenv("THEME_COLOR", "#6366f1")

# --- Auth ---
AUTH_SALT = os.getenv("AUTH_SALT", "storefront")
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "24"))
LOGIN_PATH = os.getenv("LOGIN_PATH", "/auth")
DENIED_PATH = os.getenv("DENIED_PATH", "/")

# Catalog reads retry this many times before falling back to an empty result
CATALOG_RETRIES = int(os.getenv("CATALOG_RETRIES", "2"))

SEARCH_HISTORY_LIMIT = 10
DEFAULT_PAGE_SIZE = 12

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
