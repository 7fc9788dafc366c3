from enum import Enum

class Role(str, Enum):
    PATIENT = "patient"
    DOCTOR = "doctor"
    ADMIN = "admin"

class AppointmentStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELED = "Canceled"

# Statuses that hold a slot. Completed keeps the slot booked but is not "active".
ACTIVE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})

ALLOWED_TRANSITIONS = {
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELED: frozenset(),
}

class NotificationType(str, Enum):
    APPOINTMENT = "appointment"
    RATING = "rating"
    SYSTEM = "system"

class PushEvent(str, Enum):
    NOTIFICATION = "notification"
    NOTIFICATION_READ = "notification-read"
    DOCTOR_DASHBOARD_UPDATE = "doctor-dashboard-update"
    ADMIN_DASHBOARD_UPDATE = "admin-dashboard-update"

MIN_RATING = 0.5
MAX_RATING = 5.0
