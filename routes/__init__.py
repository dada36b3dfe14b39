from routes.health import health_bp
from routes.booking import booking_bp
from routes.schedules import schedules_bp
from routes.payments import payments_bp, access_bp
from routes.stripe_webhook import webhook_bp
