"""
Resolves which intake fields apply to an education level/status pair and
validates submitted intake data against them.

Field selection is a single registry lookup; see services/intake/fields.py.
"""
import logging
import math
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.constants import EducationLevel, EducationStatus, FieldKind
from services.errors import InvalidSubmissionError
from services.intake.fields import (
    BASE_COMMON_FIELDS,
    EDUCATION_STATUS_FIELD,
    SPECIFIC_FIELD_REGISTRY,
    FieldSchema,
    FieldSpec,
)

logger = logging.getLogger(__name__)

ACADEMIC_DATA_KEY = "academicData"
STATUS_KEY = "educationStatus"
LEVEL_KEY = "educationLevel"


def requires_status(level: EducationLevel) -> bool:
    return (level, None) not in SPECIFIC_FIELD_REGISTRY


def common_fields(level: EducationLevel) -> FieldSchema:
    if requires_status(level):
        return {STATUS_KEY: EDUCATION_STATUS_FIELD, **BASE_COMMON_FIELDS}
    return dict(BASE_COMMON_FIELDS)


def specific_fields(level: EducationLevel, status: Optional[EducationStatus] = None) -> FieldSchema:
    """
    Returns the academic fields for a level/status pair.

    A status-bearing level with no (or an unrecognised) status resolves to the
    "Currently Studying" branch.
    """
    if not requires_status(level):
        return dict(SPECIFIC_FIELD_REGISTRY[(level, None)])
    schema = SPECIFIC_FIELD_REGISTRY.get((level, status))
    if schema is None:
        logger.warning(f"No '{status}' field set for {level.value}; using '{EducationStatus.STUDYING.value}' fields")
        schema = SPECIFIC_FIELD_REGISTRY[(level, EducationStatus.STUDYING)]
    return dict(schema)


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True # 0 and 0.0 are real answers


def _format_bound(bound: float) -> str:
    return f"{bound:g}"


def _check_field(name: str, spec: FieldSpec, values: Mapping[str, Any]) -> Optional[str]:
    value = values.get(name)
    if not _is_present(value):
        return f"{spec.label} is required" if spec.required else None

    if spec.kind == FieldKind.NUMBER:
        if isinstance(value, bool):
            return f"{spec.label} must be a number"
        try:
            number = float(value)
        except (TypeError, ValueError):
            return f"{spec.label} must be a number"
        # "nan" and "inf" parse as floats but fall outside every range
        if not math.isfinite(number):
            return f"{spec.label} must be a number"
        if spec.min is not None and number < spec.min:
            return f"Minimum value is {_format_bound(spec.min)}"
        if spec.max is not None and number > spec.max:
            return f"Maximum value is {_format_bound(spec.max)}"
        return None

    if spec.kind == FieldKind.SELECT and spec.options:
        if str(value) not in spec.options:
            return f"'{value}' is not a valid option for {spec.label}"
        if spec.required and spec.other_option and str(value) == spec.other_option:
            if not _is_present(values.get(f"{name}Other")):
                return f"Please specify your {spec.label.lower()}"
    return None


def _parse_status(raw: Any) -> Optional[EducationStatus]:
    if isinstance(raw, EducationStatus):
        return raw
    try:
        return EducationStatus(raw)
    except ValueError:
        return None


def validate(level: EducationLevel, payload: Mapping[str, Any]) -> Dict[str, str]:
    """
    Validates a flat intake payload: common fields at the top level, specific
    fields under "academicData".

    Returns:
        Every violation keyed by field path ("familyIncome", "academicData.currentCGPA").
        An empty dict means the payload is valid.
    """
    errors: Dict[str, str] = {}

    for name, spec in common_fields(level).items():
        message = _check_field(name, spec, payload)
        if message:
            errors[name] = message

    status = _parse_status(payload.get(STATUS_KEY)) if requires_status(level) else None
    academic = payload.get(ACADEMIC_DATA_KEY) or {}
    if not isinstance(academic, Mapping):
        errors[ACADEMIC_DATA_KEY] = "Academic details must be an object"
        academic = {}

    for name, spec in specific_fields(level, status).items():
        message = _check_field(name, spec, academic)
        if message:
            errors[f"{ACADEMIC_DATA_KEY}.{name}"] = message

    if errors:
        logger.debug(f"Intake for {level.value} failed validation on {sorted(errors)}")
    return errors


class EducationIntake(BaseModel):
    """
    An intake draft. Specific (academic) data is tied to the level/status pair it
    was collected under, so switching either discards it.
    """
    model_config = ConfigDict(populate_by_name=True)

    education_level: EducationLevel = Field(alias="educationLevel")
    education_status: Optional[EducationStatus] = Field(default=None, alias="educationStatus")
    common_fields: Dict[str, Any] = Field(default_factory=dict, alias="commonFields")
    academic_data: Dict[str, Any] = Field(default_factory=dict, alias="academicData")

    def with_level(self, level: EducationLevel) -> "EducationIntake":
        if level == self.education_level:
            return self
        status = self.education_status if requires_status(level) else None
        return self.model_copy(update={"education_level": level, "education_status": status, "academic_data": {}})

    def with_status(self, status: Optional[EducationStatus]) -> "EducationIntake":
        if status == self.education_status:
            return self
        return self.model_copy(update={"education_status": status, "academic_data": {}})

    def form_payload(self) -> Dict[str, Any]:
        """Flat payload in the shape validate() and the producers read."""
        payload: Dict[str, Any] = dict(self.common_fields)
        payload[LEVEL_KEY] = self.education_level.value
        if self.education_status is not None:
            payload[STATUS_KEY] = self.education_status.value
        payload[ACADEMIC_DATA_KEY] = dict(self.academic_data)
        return payload


def require_valid(intake: EducationIntake) -> None:
    errors = validate(intake.education_level, intake.form_payload())
    if errors:
        raise InvalidSubmissionError("Please complete all required fields", errors)
