import os
from dotenv import load_dotenv

# Ensure .env is loaded from the project root even when scripts run from subfolders
BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
ENV_PATH = os.path.join(BASE_DIR, ".env")
load_dotenv(ENV_PATH)

# MongoDB connection string (use environment variable for security)
MONGO_URI = os.getenv("MONGO_URI", "mongodb://localhost:27017/")
MONGO_DB_NAME = os.getenv("MONGO_DB_NAME", "captcha_broker")

# Flask app configuration
FLASK_DEBUG = os.getenv("FLASK_DEBUG", "False") == "True"
FLASK_PORT = int(os.getenv("FLASK_PORT", 3001))
FLASK_HOST = os.getenv("FLASK_HOST", "0.0.0.0")

# Upstream solver configuration
UPSTREAM_BASE_URL = os.getenv("UPSTREAM_BASE_URL", "https://api.captchasonic.com").rstrip("/")
UPSTREAM_TIMEOUT = int(os.getenv("UPSTREAM_TIMEOUT", 10))
CAPTCHA_API_KEY = os.getenv("CAPTCHA_API_KEY", "")

# Settings singleton defaults, applied only when the document is first created
DEFAULT_APP_VERSION = os.getenv("DEFAULT_APP_VERSION", "1.0.0")
DEFAULT_SETTINGS = {
    "maintenance_mode": False,
    "free_trial_allowed": False,
    "app_version": DEFAULT_APP_VERSION,
    "upstream_key": CAPTCHA_API_KEY,
}

# Task records
RECORD_PENDING_TASKS = os.getenv("RECORD_PENDING_TASKS", "False").lower() == "true"
TASK_LIST_LIMIT = int(os.getenv("TASK_LIST_LIMIT", 100))

# Bootstrap admin created by /init/setup (skipped when ADMIN_EMAIL is empty)
ADMIN_NAME = os.getenv("ADMIN_NAME", "Administrator")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")

# Database Configuration
DB_CONNECTION_TIMEOUT = int(os.getenv("DB_CONNECTION_TIMEOUT", 2000))
DB_MAX_POOL_SIZE = int(os.getenv("DB_MAX_POOL_SIZE", 50))
DB_MIN_POOL_SIZE = int(os.getenv("DB_MIN_POOL_SIZE", 0))

# Logging Configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
