from .db import db
from .audit_log import AuditLog
from .slot import Slot
from .booking import Booking
from .payment import Payment
from .schedule import ScheduleTemplate, ScheduleEntry
