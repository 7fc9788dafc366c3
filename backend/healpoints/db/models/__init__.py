# healpoints/db/models/__init__.py
# Importing the package registers every mapper on Base.metadata (Alembic, create_all).
from healpoints.db.models.user import UserModel
from healpoints.db.models.doctor import DoctorModel
from healpoints.db.models.patient import PatientModel
from healpoints.db.models.slot import SlotModel
from healpoints.db.models.appointment import AppointmentModel
from healpoints.db.models.notification import NotificationModel
from healpoints.db.models.rating import RatingModel

__all__ = [
    "UserModel",
    "DoctorModel",
    "PatientModel",
    "SlotModel",
    "AppointmentModel",
    "NotificationModel",
    "RatingModel",
]
