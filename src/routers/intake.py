from typing import Optional

from fastapi import APIRouter, Query

from src.constants import EducationLevel, EducationStatus
from src.schemas.envelope import envelope
from src.schemas.intake import IntakeSchemaView
from services.intake.resolver import (
    EducationIntake,
    common_fields,
    require_valid,
    requires_status,
    specific_fields,
)

router = APIRouter(prefix="/intake")


@router.get("/schema")
async def get_intake_schema(
    education_level: EducationLevel = Query(alias="educationLevel"),
    education_status: Optional[EducationStatus] = Query(default=None, alias="educationStatus"),
):
    """Fields to render for a level/status pair."""
    view = IntakeSchemaView(
        education_level=education_level,
        education_status=education_status if requires_status(education_level) else None,
        requires_status=requires_status(education_level),
        common_fields=common_fields(education_level),
        specific_fields=specific_fields(education_level, education_status),
    )
    return envelope(view)


@router.post("/validate")
async def validate_intake(intake: EducationIntake):
    require_valid(intake)
    return envelope({"valid": True, "errors": {}}, "Intake is valid")
