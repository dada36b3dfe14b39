# Bookable service types and the kind of booking each one produces
ADVISORY_SERVICES = ("ConsultorioFinanciero", "CuentaAsesorada")
TRAINING_SERVICES = ("SwingTrading", "AdvancedStrategies")
SERVICE_TYPES = ADVISORY_SERVICES + TRAINING_SERVICES

# Time-boxed subscription services sold through the payment provider
SUBSCRIPTION_SERVICES = ("TraderCall", "SmartMoney", "CashFlow", "SwingTrading", "DowJones")

BOOKING_PENDING = "pending"
BOOKING_CONFIRMED = "confirmed"
BOOKING_CANCELLED = "cancelled"
ACTIVE_BOOKING_STATUSES = (BOOKING_PENDING, BOOKING_CONFIRMED)

PAYMENT_PENDING = "pending"
PAYMENT_IN_PROCESS = "in_process"
PAYMENT_APPROVED = "approved"
PAYMENT_REJECTED = "rejected"
PAYMENT_CANCELLED = "cancelled"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_APPROVED, PAYMENT_REJECTED, PAYMENT_CANCELLED, PAYMENT_IN_PROCESS)
TERMINAL_PAYMENT_STATUSES = (PAYMENT_APPROVED, PAYMENT_REJECTED, PAYMENT_CANCELLED)


def booking_type_for(service_type: str) -> str:
    return "training" if service_type in TRAINING_SERVICES else "advisory"
