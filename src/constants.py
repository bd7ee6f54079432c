# src/constants.py
from enum import Enum


class Category(str, Enum):
    INTEREST = "interest"
    APTITUDE = "aptitude"
    PERSONALITY = "personality"
    ACADEMIC = "academic"


class QuestionKind(str, Enum):
    SINGLE_SELECT = "single_select"
    SCALE = "scale"
    YES_NO = "yes_no"


class SessionStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class EducationLevel(str, Enum):
    TENTH_PASS = "10th Pass"
    TWELFTH_PASS = "12th Pass"
    DIPLOMA = "Diploma"
    BACHELOR = "Bachelor Degree"
    MASTER = "Master Degree"


class EducationStatus(str, Enum):
    STUDYING = "Currently Studying"
    COMPLETED = "Completed"


class FieldKind(str, Enum):
    SELECT = "select"
    NUMBER = "number"
    TEXT = "text"
    TEXTAREA = "textarea"


class SourceKind(str, Enum):
    ASSESSMENT = "assessment"
    INTAKE = "intake"


# Sentinel option that activates the free-text "<field>Other" sibling
OTHER_OPTION = "Others"

# Every producer payload must carry these keys (lists, possibly empty)
RECOMMENDATION_CATEGORIES = {
    SourceKind.ASSESSMENT: ("career_paths", "strengths", "recommended_streams", "skill_development"),
    SourceKind.INTAKE: ("scholarships", "higher_education", "career_paths", "skill_development"),
}

DEFAULT_CONFIDENCE_SCORE = 75
