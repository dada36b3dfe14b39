import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored next to the app as booking.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "booking.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Identity is established upstream; the gateway forwards these headers
    AUTH_USER_HEADER = "X-User-Id"
    AUTH_ROLES_HEADER = "X-User-Roles"

    # Slots and bookings are local wall-clock times of the service, in this zone
    SERVICE_TIMEZONE = os.getenv("SERVICE_TIMEZONE", "America/Argentina/Buenos_Aires")

    # Conflict detection
    GRACE_MINUTES = int(os.getenv("GRACE_MINUTES", "30"))
    WORK_START = os.getenv("WORK_START", "08:00")
    WORK_END = os.getenv("WORK_END", "20:00")
    SUGGESTION_LIMIT = 5
    SUGGESTION_STEP_MINUTES = 30

    # Don't offer a slot that is about to become unselectable
    LISTING_BUFFER_MINUTES = 5
    DEFAULT_SLOT_DURATION = 60

    # service_type -> calendar it occupies; unmapped services use their own name
    RESOURCE_BY_SERVICE = {}

    #Cancellation policy
    CANCEL_CUTOFF_HOURS = 12
    # Unpaid (pending) bookings give their slot back after this long; 0 keeps them
    PENDING_HOLD_MINUTES = int(os.getenv("PENDING_HOLD_MINUTES", "30"))

    # Subscriptions
    SUBSCRIPTION_DAYS = int(os.getenv("SUBSCRIPTION_DAYS", "30"))
    # "extend": stack a renewal on top of the current active expiry
    # "overwrite": start a fresh window at the transaction time
    SUBSCRIPTION_RENEWAL_POLICY = os.getenv("SUBSCRIPTION_RENEWAL_POLICY", "extend")
    NOTIFICATION_WINDOW_HOURS = 24

    # Availability cache (disabled when unset)
    REDIS_URL = os.getenv("REDIS_URL")
    AVAILABILITY_CACHE_TTL_SECONDS = 24 * 60 * 60

    # Stripe webhook
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False
