from sqlalchemy import Column, String, Integer, Date, Time, Text, ForeignKey
from .base import Base, TimestampMixin, generate_uuid


class AppointmentStatus:
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    ALL = [SCHEDULED, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW, RESCHEDULED]
    # Statuses that count as "the patient is expected today"
    ACTIVE = (SCHEDULED, CONFIRMED, IN_PROGRESS, RESCHEDULED)
    # Statuses from which date/time may still move
    RESCHEDULABLE = (SCHEDULED, CONFIRMED, RESCHEDULED)
    TERMINAL = (COMPLETED, CANCELLED, NO_SHOW)


# Forward-only transitions; reschedule is the single loop back
APPOINTMENT_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    },
    AppointmentStatus.RESCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.NO_SHOW,
        AppointmentStatus.RESCHEDULED,
    },
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
    AppointmentStatus.NO_SHOW: set(),
}


class AppointmentPriority:
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    ALL = [NORMAL, HIGH, URGENT]


class AppointmentType:
    CONSULTATION = "consultation"
    FOLLOW_UP = "follow_up"
    VACCINATION = "vaccination"
    BLOOD_TEST = "blood_test"
    PHYSICAL_THERAPY = "physical_therapy"
    EMERGENCY = "emergency"

    ALL = [CONSULTATION, FOLLOW_UP, VACCINATION, BLOOD_TEST, PHYSICAL_THERAPY, EMERGENCY]


class Appointment(Base, TimestampMixin):
    __tablename__ = "appointments"

    id = Column(String, primary_key=True, default=generate_uuid)
    patient_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    time = Column(Time, nullable=False)
    type = Column(String(30), nullable=False, default=AppointmentType.CONSULTATION)
    duration = Column(Integer, nullable=False, default=30)  # minutes
    reason = Column(String(500), nullable=False)
    priority = Column(String(10), nullable=False, default=AppointmentPriority.NORMAL)
    status = Column(String(20), nullable=False, default=AppointmentStatus.SCHEDULED)
    room = Column(String(50), nullable=True)
    special_instructions = Column(Text, nullable=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=True)
