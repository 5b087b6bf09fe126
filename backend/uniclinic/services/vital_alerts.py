"""
Rule-based alert evaluator for vital-sign readings.
Evaluated whenever a vital_signs record is created or read back; alerts are
computed on the fly and never stored.
"""
import logging
from dataclasses import dataclass, asdict
from typing import List, Mapping, Optional

logger = logging.getLogger(__name__)


class AlertSeverity:
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    ORDER = {MEDIUM: 1, HIGH: 2, CRITICAL: 3}


class AlertType:
    HIGH_BLOOD_PRESSURE = "high_blood_pressure"
    LOW_BLOOD_PRESSURE = "low_blood_pressure"
    TACHYCARDIA = "tachycardia"
    BRADYCARDIA = "bradycardia"
    FEVER = "fever"
    HYPOTHERMIA = "hypothermia"
    TACHYPNEA = "tachypnea"
    BRADYPNEA = "bradypnea"
    CRITICAL_LOW_OXYGEN = "critical_low_oxygen"
    LOW_OXYGEN = "low_oxygen"


# Thresholds
SYSTOLIC_HIGH = 140        # mmHg, strictly above
DIASTOLIC_HIGH = 90
SYSTOLIC_LOW = 90          # mmHg, strictly below
DIASTOLIC_LOW = 60
HEART_RATE_HIGH = 100      # bpm
HEART_RATE_LOW = 60
FEVER_F = 100.4            # °F
HYPOTHERMIA_F = 96.0
RESPIRATORY_RATE_HIGH = 24  # breaths/min
RESPIRATORY_RATE_LOW = 12
SPO2_CRITICAL = 90         # %, strictly below
SPO2_LOW = 95              # %, 90-94 inclusive


@dataclass(frozen=True)
class VitalAlert:
    type: str
    message: str
    severity: str

    def to_dict(self) -> dict:
        return asdict(self)


def celsius_to_fahrenheit(celsius: float) -> float:
    return celsius * 9 / 5 + 32


def temperature_in_fahrenheit(temperature: float, unit: Optional[str]) -> float:
    if (unit or "F").upper() == "C":
        return celsius_to_fahrenheit(temperature)
    return float(temperature)


def evaluate(reading: Mapping) -> List[VitalAlert]:
    """
    Evaluate every rule against one reading.
    Order is fixed: blood pressure, heart rate, temperature, respiratory rate,
    oxygen saturation. Absent measurements are skipped.
    """
    alerts: List[VitalAlert] = []

    # ── Blood pressure (needs both values) ───────────────────────────────────
    systolic = reading.get("blood_pressure_systolic")
    diastolic = reading.get("blood_pressure_diastolic")
    if systolic is not None and diastolic is not None:
        if systolic > SYSTOLIC_HIGH or diastolic > DIASTOLIC_HIGH:
            alerts.append(VitalAlert(
                type=AlertType.HIGH_BLOOD_PRESSURE,
                message=f"Blood pressure is elevated ({systolic}/{diastolic} mmHg)",
                severity=AlertSeverity.HIGH,
            ))
        elif systolic < SYSTOLIC_LOW or diastolic < DIASTOLIC_LOW:
            alerts.append(VitalAlert(
                type=AlertType.LOW_BLOOD_PRESSURE,
                message=f"Blood pressure is low ({systolic}/{diastolic} mmHg)",
                severity=AlertSeverity.MEDIUM,
            ))

    # ── Heart rate ───────────────────────────────────────────────────────────
    heart_rate = reading.get("heart_rate")
    if heart_rate is not None:
        if heart_rate > HEART_RATE_HIGH:
            alerts.append(VitalAlert(
                type=AlertType.TACHYCARDIA,
                message=f"Heart rate is elevated ({heart_rate} bpm)",
                severity=AlertSeverity.MEDIUM,
            ))
        elif heart_rate < HEART_RATE_LOW:
            alerts.append(VitalAlert(
                type=AlertType.BRADYCARDIA,
                message=f"Heart rate is low ({heart_rate} bpm)",
                severity=AlertSeverity.MEDIUM,
            ))

    # ── Temperature (compared in Fahrenheit) ─────────────────────────────────
    temperature = reading.get("temperature")
    if temperature is not None:
        temp_f = temperature_in_fahrenheit(temperature, reading.get("temperature_unit"))
        if temp_f > FEVER_F:
            alerts.append(VitalAlert(
                type=AlertType.FEVER,
                message=f"Patient has a fever ({temp_f:.1f}°F)",
                severity=AlertSeverity.HIGH,
            ))
        elif temp_f < HYPOTHERMIA_F:
            alerts.append(VitalAlert(
                type=AlertType.HYPOTHERMIA,
                message=f"Body temperature is low ({temp_f:.1f}°F)",
                severity=AlertSeverity.MEDIUM,
            ))

    # ── Respiratory rate ─────────────────────────────────────────────────────
    respiratory_rate = reading.get("respiratory_rate")
    if respiratory_rate is not None:
        if respiratory_rate > RESPIRATORY_RATE_HIGH:
            alerts.append(VitalAlert(
                type=AlertType.TACHYPNEA,
                message=f"Respiratory rate is elevated ({respiratory_rate}/min)",
                severity=AlertSeverity.MEDIUM,
            ))
        elif respiratory_rate < RESPIRATORY_RATE_LOW:
            alerts.append(VitalAlert(
                type=AlertType.BRADYPNEA,
                message=f"Respiratory rate is low ({respiratory_rate}/min)",
                severity=AlertSeverity.MEDIUM,
            ))

    # ── Oxygen saturation ────────────────────────────────────────────────────
    spo2 = reading.get("oxygen_saturation")
    if spo2 is not None:
        if spo2 < SPO2_CRITICAL:
            alerts.append(VitalAlert(
                type=AlertType.CRITICAL_LOW_OXYGEN,
                message=f"Oxygen saturation is critically low ({spo2}%)",
                severity=AlertSeverity.CRITICAL,
            ))
        elif spo2 < SPO2_LOW:
            alerts.append(VitalAlert(
                type=AlertType.LOW_OXYGEN,
                message=f"Oxygen saturation is low ({spo2}%)",
                severity=AlertSeverity.HIGH,
            ))

    for alert in alerts:
        if alert.severity == AlertSeverity.CRITICAL:
            logger.warning("Critical vital-sign alert: %s", alert.message)

    return alerts


def highest_severity(alerts: List[VitalAlert]) -> Optional[str]:
    if not alerts:
        return None
    return max(alerts, key=lambda a: AlertSeverity.ORDER[a.severity]).severity
