"""
Typed content for medical records.
A record's JSON ``content`` is always one of these variants, chosen by the
record type and validated before anything is written.
"""
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError as PydanticValidationError,
    ValidationInfo,
    field_validator,
)

from .medical_record import RecordType
from ..exceptions import ValidationError

MedicationRoute = Literal["oral", "injection", "topical", "inhalation", "iv", "im", "sc"]

# Accepted temperature window, in Fahrenheit
TEMPERATURE_MIN_F = 90.0
TEMPERATURE_MAX_F = 110.0


class _Content(BaseModel):
    model_config = ConfigDict(extra="forbid")

    def to_json(self) -> dict:
        return self.model_dump(mode="json", exclude_none=True)


class VitalSignsContent(_Content):
    blood_pressure_systolic: Optional[int] = Field(None, ge=60, le=250)
    blood_pressure_diastolic: Optional[int] = Field(None, ge=40, le=150)
    heart_rate: Optional[int] = Field(None, ge=30, le=200)
    # Unit precedes temperature so the range check below can see it
    temperature_unit: Literal["F", "C"]
    temperature: Optional[float] = None
    respiratory_rate: Optional[int] = Field(None, ge=8, le=40)
    oxygen_saturation: Optional[int] = Field(None, ge=70, le=100)
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator("temperature")
    @classmethod
    def _temperature_in_range(cls, value, info: ValidationInfo):
        if value is None:
            return value
        temp_f = value
        if info.data.get("temperature_unit") == "C":
            temp_f = value * 9 / 5 + 32
        if not TEMPERATURE_MIN_F <= temp_f <= TEMPERATURE_MAX_F:
            raise ValueError(
                f"temperature must be between {TEMPERATURE_MIN_F:g} and {TEMPERATURE_MAX_F:g} °F"
            )
        return value


class MedicationContent(_Content):
    medication_name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    route: MedicationRoute
    administration_time: datetime
    prescribing_doctor: str = Field(..., min_length=1, max_length=255)
    notes: Optional[str] = Field(None, max_length=1000)
    # Filled in by the service, never by the caller
    status: Literal["administered"] = "administered"
    administered_by: Optional[str] = None
    administered_at: Optional[datetime] = None


class TaskContent(_Content):
    description: str = Field(..., min_length=1, max_length=500)
    priority: Literal["low", "medium", "high"] = "medium"
    status: Literal["pending", "completed"] = "pending"
    due_time: Optional[datetime] = None
    instructions: Optional[str] = Field(None, max_length=1000)
    completion_notes: Optional[str] = None
    actual_duration: Optional[int] = Field(None, ge=0)
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None


class GeneralContent(_Content):
    summary: Optional[str] = None
    follow_up_date: Optional[date] = None


CONTENT_MODELS = {
    RecordType.VITAL_SIGNS: VitalSignsContent,
    RecordType.MEDICATION: MedicationContent,
    RecordType.TASK: TaskContent,
    RecordType.GENERAL: GeneralContent,
}


def parse_content(record_type: str, data: dict) -> _Content:
    """Validate raw content against the variant for ``record_type``."""
    model = CONTENT_MODELS.get(record_type)
    if model is None:
        raise ValidationError({"type": [f"Unknown record type '{record_type}'."]})
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc
