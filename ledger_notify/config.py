# ledger_notify/config.py
import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Azure Table Storage
AZURE_STORAGE_CONNECTION_STRING = os.getenv("AZURE_STORAGE_CONNECTION_STRING")
NOTIFICATIONS_TABLE = os.getenv("NOTIFICATIONS_TABLE", "notifications")
PUSH_SUBSCRIPTIONS_TABLE = os.getenv("PUSH_SUBSCRIPTIONS_TABLE", "pushsubscriptions")

# Azure Service Bus (activity events)
AZURE_SERVICE_BUS_CONNECTION_STRING = os.getenv("AZURE_SERVICE_BUS_CONNECTION_STRING")
AZURE_SERVICE_BUS_QUEUE_NAME = os.getenv("AZURE_SERVICE_BUS_QUEUE_NAME", "activity-queue")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "dev-only-secret-change-me-in-production")
JWT_ALG = os.getenv("JWT_ALG", "HS256")
ADMIN_USER_IDS = {u.strip() for u in os.getenv("ADMIN_USER_IDS", "").split(",") if u.strip()}

# Web push (server-held signing keys)
VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY", "")
VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY", "")
VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:admin@example.com")
PUSH_DEFAULT_TAG = os.getenv("PUSH_DEFAULT_TAG", "ledger-notification")

# Retention policy
OLD_NOTIFICATION_DAYS = int(os.getenv("OLD_NOTIFICATION_DAYS", "7"))
READ_NOTIFICATION_DAYS = int(os.getenv("READ_NOTIFICATION_DAYS", "3"))
GLOBAL_USER_LIMIT = int(os.getenv("GLOBAL_USER_LIMIT", "100"))
SESSION_USER_LIMIT = int(os.getenv("SESSION_USER_LIMIT", "50"))
READ_DELETE_DELAY_SECONDS = float(os.getenv("READ_DELETE_DELAY_SECONDS", "5"))
MAINTENANCE_INTERVAL_SECONDS = float(os.getenv("MAINTENANCE_INTERVAL_SECONDS", str(30 * 60)))
CLEANUP_CONCURRENCY = int(os.getenv("CLEANUP_CONCURRENCY", "4"))

# Feed
FEED_SIZE = int(os.getenv("FEED_SIZE", "50"))
