from typing import Dict, Optional

from pydantic import BaseModel

from src.constants import EducationLevel, EducationStatus
from services.intake.fields import FieldSpec


class IntakeSchemaView(BaseModel):
    education_level: EducationLevel
    education_status: Optional[EducationStatus] = None
    requires_status: bool
    common_fields: Dict[str, FieldSpec]
    specific_fields: Dict[str, FieldSpec]
