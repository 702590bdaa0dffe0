"""
Vitals Module
=============
Validation and BMI computation for the optional vitals form.

The form arrives as raw strings keyed by field name. Every field is
required and must parse to a number inside its accepted range.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)


class VitalRange(NamedTuple):
    low: float
    high: float
    error: str


VITAL_RANGES: dict[str, VitalRange] = {
    "blood_pressure_systolic": VitalRange(
        70, 200, "Please enter a valid systolic pressure (70-200 mmHg)"
    ),
    "blood_pressure_diastolic": VitalRange(
        40, 120, "Please enter a valid diastolic pressure (40-120 mmHg)"
    ),
    "blood_sugar": VitalRange(50, 400, "Please enter a valid blood sugar level (50-400 mg/dL)"),
    "heart_rate": VitalRange(40, 200, "Please enter a valid heart rate (40-200 bpm)"),
    "weight": VitalRange(20, 300, "Please enter a valid weight (20-300 kg)"),
    "height": VitalRange(100, 250, "Please enter a valid height (100-250 cm)"),
}

BMI_UNDERWEIGHT = "Underweight"
BMI_NORMAL = "Normal"
BMI_OVERWEIGHT = "Overweight"
BMI_OBESE = "Obese"

BMI_COLORS = {
    BMI_UNDERWEIGHT: "🔵",
    BMI_NORMAL: "🟢",
    BMI_OVERWEIGHT: "🟡",
    BMI_OBESE: "🔴",
}

VITALS_TIPS = [
    "Measure blood pressure at rest, preferably in the morning",
    "Check blood sugar levels 2 hours after meals for accurate readings",
    "Take measurements at the same time daily for consistent tracking",
    "Always consult a doctor for concerning vital signs",
]


class HealthVitals(BaseModel):
    """Validated vitals. Weight in kg, height in cm."""

    model_config = ConfigDict(frozen=True)

    blood_pressure_systolic: float
    blood_pressure_diastolic: float
    blood_sugar: float
    heart_rate: float
    weight: float
    height: float
    bmi: float

    @property
    def bmi_category(self) -> str:
        return bmi_category(self.bmi)


def _to_number(raw) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    text = str(raw).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def validate_vitals(form: Mapping[str, object]) -> dict[str, str]:
    """Check every vitals field against its accepted range.

    Args:
        form: Raw form values keyed by field name (see ``VITAL_RANGES``).

    Returns:
        Mapping of field name to error message. Empty when the form is valid.
    """
    errors: dict[str, str] = {}
    for field, bounds in VITAL_RANGES.items():
        value = _to_number(form.get(field))
        if value is None or math.isnan(value) or not bounds.low <= value <= bounds.high:
            errors[field] = bounds.error
    if errors:
        logger.info("Vitals form rejected: %s", ", ".join(errors))
    return errors


def calculate_bmi(weight: float, height_cm: float) -> float:
    """Body mass index from weight in kg and height in cm."""
    if height_cm <= 0:
        raise ValueError("height_cm must be positive")
    height_m = height_cm / 100
    return weight / (height_m * height_m)


def bmi_category(bmi: float) -> str:
    if bmi < 18.5:
        return BMI_UNDERWEIGHT
    if bmi < 25:
        return BMI_NORMAL
    if bmi < 30:
        return BMI_OVERWEIGHT
    return BMI_OBESE


def parse_vitals(form: Mapping[str, object]) -> Optional[HealthVitals]:
    """Validate the form and build ``HealthVitals``, or None if invalid."""
    if validate_vitals(form):
        return None
    values = {field: _to_number(form.get(field)) for field in VITAL_RANGES}
    bmi = calculate_bmi(values["weight"], values["height"])
    vitals = HealthVitals(**values, bmi=bmi)
    logger.info("Vitals recorded (BMI %.1f, %s).", bmi, vitals.bmi_category)
    return vitals
