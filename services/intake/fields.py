# services/intake/fields.py
# Static field definitions for the education intake form.
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from src.constants import OTHER_OPTION, EducationLevel, EducationStatus, FieldKind


class FieldSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    kind: FieldKind
    options: Optional[List[str]] = None
    required: bool = True
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    placeholder: Optional[str] = None
    other_option: Optional[str] = None # Choosing this value requires a non-empty "<name>Other"


FieldSchema = Dict[str, FieldSpec]

YEARS = ["2026", "2025", "2024", "2023", "2022", "2021", "Earlier"]


def _select(label: str, options: List[str], placeholder: str, required: bool = True) -> FieldSpec:
    return FieldSpec(
        label=label,
        kind=FieldKind.SELECT,
        options=options,
        required=required,
        placeholder=placeholder,
        other_option=OTHER_OPTION if OTHER_OPTION in options else None,
    )


def _number(label: str, maximum: float, placeholder: str) -> FieldSpec:
    return FieldSpec(label=label, kind=FieldKind.NUMBER, min=0, max=maximum, step=0.01, placeholder=placeholder)


def _text(label: str, placeholder: str, required: bool = True, kind: FieldKind = FieldKind.TEXT) -> FieldSpec:
    return FieldSpec(label=label, kind=kind, required=required, placeholder=placeholder)


# --- Common fields ---

EDUCATION_STATUS_FIELD = _select(
    "Current Education Status",
    [s.value for s in EducationStatus],
    "Select status",
)

BASE_COMMON_FIELDS: FieldSchema = {
    "familyIncome": _select(
        "Family Annual Income",
        ["Below 2 Lakhs", "2-5 Lakhs", "5-8 Lakhs", "Above 8 Lakhs"],
        "Select income range",
    ),
    "careerInterest": _select(
        "Primary Career Interest",
        ["Technical", "Research", "Management", "Creative", "Government Jobs", "Business"],
        "Select your interest",
    ),
}


# --- Level specific fields ---

_STREAMS = ["Science (PCM)", "Science (PCB)", "Commerce", "Arts"]
_DIPLOMA_BRANCHES = [
    "Computer Science", "Mechanical Engineering", "Civil Engineering",
    "Electrical Engineering", "Electronics", "Automobile", OTHER_OPTION,
]
_BACHELOR_DEGREES = [
    "BSc IT", "BSc CS", "BSc (General)", "B.Com", "BA", "BBA", "BCA", "B.Tech", "BE", OTHER_OPTION,
]
_MASTER_PROGRAMS = ["MSc", "MA", "M.Com", "MBA", "MCA", "MTech", "ME", OTHER_OPTION]

_TENTH: FieldSchema = {
    "percentage": _number("10th Percentage", 100, "Enter final percentage"),
    "favouriteSubject": _select(
        "Favourite Subject",
        ["Mathematics", "Science", "English", "Hindi", "Social Science", "Computer", OTHER_OPTION],
        "Select subject",
    ),
    "futureStream": _select("Interested Stream for 11th/12th", _STREAMS, "Select stream"),
}

_TWELFTH: FieldSchema = {
    "stream": _select("Stream/Group", _STREAMS, "Select your stream"),
    "percentage": _number("12th Percentage", 100, "Enter final percentage"),
    "favouriteSubject": _select(
        "Favourite Subject",
        [
            "Physics", "Chemistry", "Mathematics", "Biology", "Accounts", "Economics",
            "Computer Science", "Business Studies", "English", OTHER_OPTION,
        ],
        "Select subject",
    ),
    "highestMarksSubject": _text("Highest Marks Subject", "Subject where you scored best"),
}

_DIPLOMA_STUDYING: FieldSchema = {
    "branch": _select("Diploma Branch/Specialization", _DIPLOMA_BRANCHES, "Select branch"),
    "semestersCompleted": _select("Semesters Completed", ["1", "2", "3", "4", "5"], "How many semesters completed?"),
    "currentCGPA": _number("Current CGPA/Percentage", 10, "Enter current CGPA (out of 10) or %"),
    "strongestSubject": _text("Strongest Subject/Area", "Your best performing subject"),
}

_DIPLOMA_COMPLETED: FieldSchema = {
    "branch": _select("Diploma Branch/Specialization", _DIPLOMA_BRANCHES, "Select branch"),
    "finalCGPA": _number("Final CGPA/Percentage", 10, "Enter final CGPA (out of 10) or %"),
    "passingYear": _select("Year of Completion", YEARS, "Select year"),
    "strongestSubject": _text("Strongest Subject/Area", "Your best performing subject"),
}

_BACHELOR_STUDYING: FieldSchema = {
    "degreeName": _select("Degree Name", _BACHELOR_DEGREES, "Select degree"),
    "specialization": _text("Specialization/Major", "e.g., Computer Science, Marketing", required=False),
    "semestersCompleted": _select(
        "Semesters Completed", ["1", "2", "3", "4", "5", "6", "7"], "How many semesters completed?"
    ),
    "currentCGPA": _number("Current CGPA", 10, "Enter CGPA so far (out of 10)"),
    "strongestSubject": _text("Strongest Subject/Area", "Subject where you excel"),
}

_BACHELOR_COMPLETED: FieldSchema = {
    "degreeName": _select("Degree Name", _BACHELOR_DEGREES, "Select degree"),
    "specialization": _text("Specialization/Major", "e.g., Computer Science, Marketing", required=False),
    "finalCGPA": _number("Final CGPA", 10, "Enter final CGPA (out of 10)"),
    "passingYear": _select("Year of Completion", YEARS, "Select year"),
    "strongestSubject": _text("Strongest Subject/Area", "Subject where you excel"),
}

_MASTER_STUDYING: FieldSchema = {
    "degreeName": _select("Master's Program", _MASTER_PROGRAMS, "Select program"),
    "specialization": _text("Specialization", "e.g., Data Science, Finance, AI"),
    "semestersCompleted": _select("Semesters Completed", ["1", "2", "3"], "How many semesters completed?"),
    "currentCGPA": _number("Current CGPA", 10, "Enter CGPA so far (out of 10)"),
    "researchInterest": _text(
        "Research Interest (if any)",
        "Describe your research interests or thesis topic",
        required=False,
        kind=FieldKind.TEXTAREA,
    ),
}

_MASTER_COMPLETED: FieldSchema = {
    "degreeName": _select("Master's Program", _MASTER_PROGRAMS, "Select program"),
    "specialization": _text("Specialization", "e.g., Data Science, Finance, AI"),
    "finalCGPA": _number("Final CGPA", 10, "Enter final CGPA (out of 10)"),
    "passingYear": _select("Year of Completion", YEARS, "Select year"),
    "researchInterest": _text(
        "Research Interest/Thesis Topic",
        "Describe your research work or thesis",
        required=False,
        kind=FieldKind.TEXTAREA,
    ),
}

# Keyed by (level, status). Levels without a status branch use None.
SPECIFIC_FIELD_REGISTRY: Dict[Tuple[EducationLevel, Optional[EducationStatus]], FieldSchema] = {
    (EducationLevel.TENTH_PASS, None): _TENTH,
    (EducationLevel.TWELFTH_PASS, None): _TWELFTH,
    (EducationLevel.DIPLOMA, EducationStatus.STUDYING): _DIPLOMA_STUDYING,
    (EducationLevel.DIPLOMA, EducationStatus.COMPLETED): _DIPLOMA_COMPLETED,
    (EducationLevel.BACHELOR, EducationStatus.STUDYING): _BACHELOR_STUDYING,
    (EducationLevel.BACHELOR, EducationStatus.COMPLETED): _BACHELOR_COMPLETED,
    (EducationLevel.MASTER, EducationStatus.STUDYING): _MASTER_STUDYING,
    (EducationLevel.MASTER, EducationStatus.COMPLETED): _MASTER_COMPLETED,
}
