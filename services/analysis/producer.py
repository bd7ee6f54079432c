"""
Recommendation producers.

A producer turns a source payload (assessment scores or an education intake)
into a dict holding one list per recommendation category and an optional
"confidence_score". Validation of that shape is the manager's job.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

import httpx

from config.settings import settings
from src.constants import RECOMMENDATION_CATEGORIES, EducationLevel, EducationStatus, SourceKind
from services.assessment_engine.scorer import rank_categories
from services.errors import ProducerError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are an expert Indian education and career guidance advisor. Always return valid JSON."

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class RecommendationProducer(Protocol):
    async def produce(self, source_kind: SourceKind, payload: Dict[str, Any]) -> Dict[str, Any]: ...


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def parse_model_output(text: str) -> Dict[str, Any]:
    """Strips Markdown code fences and decodes the JSON object inside, normalising camelCase keys."""
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ProducerError(f"Model returned invalid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ProducerError("Model returned JSON that is not an object")
    return {_snake_case(k): v for k, v in parsed.items()}


# --- Prompt building ---

def _dimension_lines(dimensions: Dict[str, Dict[str, int]]) -> str:
    lines = []
    for category, values in dimensions.items():
        ranked = ", ".join(f"{key.replace('_', ' ').title()} {values[key]}" for key in rank_categories(values))
        if ranked:
            lines.append(f"- {category.title()}: {ranked}")
    return "\n".join(lines)


def _assessment_prompt(payload: Dict[str, Any]) -> str:
    scores = payload.get("scores") or {}
    lines = "\n".join(f"- {category.title()}: {scores[category]}/100" for category in rank_categories(scores))
    breakdown = _dimension_lines(payload.get("dimensions") or {})
    if breakdown:
        lines += f"\n\n**BREAKDOWN WITHIN EACH CATEGORY (0-100):**\n{breakdown}"
    keys = ", ".join(f'"{c}"' for c in RECOMMENDATION_CATEGORIES[SourceKind.ASSESSMENT])
    return f"""Analyze the following student assessment results and provide personalized career guidance
for the Indian education system.

**ASSESSMENT SCORES (0-100 per category):**
{lines}

Return ONLY a JSON object with the keys {keys} and "confidence_score".
Each key except "confidence_score" maps to a list:
- "career_paths": objects with "title", "description", "match_percentage"
- "strengths": short strings grounded in the scores
- "recommended_streams": objects with "stream" and "reasoning"
- "skill_development": objects with "category", "skills", "resources", "priority"
"confidence_score" is an integer 0-100 reflecting how complete the data is."""


def _intake_prompt(payload: Dict[str, Any]) -> str:
    academic = payload.get("academicData") or {}
    details = "\n".join(f"- {name}: {value}" for name, value in academic.items()) or "- Not provided"
    status = payload.get("educationStatus")
    keys = ", ".join(f'"{c}"' for c in RECOMMENDATION_CATEGORIES[SourceKind.INTAKE])
    return f"""Generate personalized opportunity recommendations for an Indian student.

**PROFILE:**
Education Level: {payload.get("educationLevel")}
{f"Education Status: {status}" if status else ""}
Family Annual Income: {payload.get("familyIncome")}
Career Interest: {payload.get("careerInterest")}

**ACADEMIC DETAILS:**
{details}

Return ONLY a JSON object with the keys {keys} and "confidence_score".
- "scholarships": real Indian scholarships with "type", "name", "eligibility", "estimated_amount", "match_percentage"
- "higher_education": programs with "program", "duration", "top_colleges", "match_percentage"
- "career_paths": careers with "title", "description", "salary_range", "match_percentage"
- "skill_development": objects with "category", "skills", "resources", "priority"
Consider family income for need-based scholarships and whether the student is still studying.
"confidence_score" is an integer 0-100 reflecting how complete the data is."""


def build_prompt(source_kind: SourceKind, payload: Dict[str, Any]) -> str:
    if source_kind == SourceKind.ASSESSMENT:
        return _assessment_prompt(payload)
    return _intake_prompt(payload)


# --- LLM producer ---

class LLMRecommendationProducer:
    """Calls an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        api_url: str = settings.llm_api_url,
        api_key: Optional[str] = settings.llm_api_key,
        model: str = settings.llm_model,
        timeout: float = settings.llm_timeout_seconds,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = f"{api_url.rstrip('/')}/chat/completions"
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._transport = transport

    async def produce(self, source_kind: SourceKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ProducerError("LLM_API_KEY is not configured")

        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_prompt(source_kind, payload)},
            ],
            "temperature": 0.7,
            "max_tokens": 2048,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                logger.debug(f"Requesting {source_kind.value} recommendations from {self.endpoint} ({self.model})")
                response = await client.post(self.endpoint, json=body, headers=headers)
                response.raise_for_status()
                content = response.json()["choices"][0]["message"]["content"]
            except httpx.HTTPStatusError as e:
                logger.error(f"LLM endpoint returned {e.response.status_code}: {e.response.text[:200]}")
                raise ProducerError(f"LLM request failed with status {e.response.status_code}") from e
            except httpx.RequestError as e:
                logger.error(f"LLM request error: {e}")
                raise ProducerError(f"LLM request failed: {e}") from e
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise ProducerError(f"Unexpected LLM response shape: {e}") from e

        return parse_model_output(content or "")


# --- Rule-based producer ---

CAREERS_BY_CATEGORY: Dict[str, List[Dict[str, Any]]] = {
    "interest": [
        {"title": "Product Design", "description": "Turn ideas into usable products across hardware and software."},
        {"title": "Research Scientist", "description": "Investigate open problems in labs and universities."},
    ],
    "aptitude": [
        {"title": "Software Engineering", "description": "Design and build software systems.", "entrance_exams": ["JEE Main", "BITSAT"]},
        {"title": "Data Analytics", "description": "Find patterns in data to support decisions."},
    ],
    "personality": [
        {"title": "Management & Consulting", "description": "Lead teams and advise organisations.", "entrance_exams": ["CAT", "IPMAT"]},
        {"title": "Counselling & Social Work", "description": "Support people through guidance and community programs."},
    ],
    "academic": [
        {"title": "Engineering & Technology", "description": "Apply science and maths to technical problems.", "entrance_exams": ["JEE Main", "JEE Advanced"]},
        {"title": "Medicine & Life Sciences", "description": "Clinical and biological sciences careers.", "entrance_exams": ["NEET"]},
    ],
}

STRENGTH_LABELS = {
    "interest": "Clear, well-formed interests",
    "aptitude": "Strong problem-solving aptitude",
    "personality": "Dependable working style",
    "academic": "Solid academic foundation",
}

SKILLS_BY_CATEGORY = {
    "interest": {"category": "Exploration", "skills": ["Project work", "Portfolio building"], "resources": ["NPTEL", "YouTube"]},
    "aptitude": {"category": "Quantitative", "skills": ["Logical reasoning", "Python"], "resources": ["Coursera free courses", "NPTEL"]},
    "personality": {"category": "Communication", "skills": ["Public speaking", "Teamwork"], "resources": ["Toastmasters", "College clubs"]},
    "academic": {"category": "Study", "skills": ["Exam preparation", "Time management"], "resources": ["NCERT books", "Khan Academy"]},
}

# Keyed by the scoring_key of interest questions
CAREERS_BY_INTEREST_TYPE: Dict[str, List[Dict[str, Any]]] = {
    "realistic": [{"title": "Mechanical & Civil Engineering", "description": "Build and maintain physical systems and infrastructure."}],
    "investigative": [{"title": "Data Science", "description": "Use statistics and programming to answer open questions."}],
    "artistic": [{"title": "Design & Media", "description": "Create visual, written or digital work for audiences."}],
    "social": [{"title": "Teaching & Healthcare", "description": "Work directly with people to educate or care for them."}],
    "enterprising": [{"title": "Entrepreneurship", "description": "Start and grow ventures, products and teams."}],
    "conventional": [{"title": "Accounting & Finance", "description": "Manage records, budgets and financial systems."}],
}

APTITUDE_STRENGTHS = {
    "numerical": "Strong numerical reasoning",
    "verbal": "Strong verbal reasoning",
    "spatial": "Strong spatial reasoning",
}

CAREERS_BY_INTEREST = {
    "Technical": ["Software Developer", "Network Engineer"],
    "Research": ["Research Assistant", "Lab Scientist"],
    "Management": ["Business Analyst", "Operations Associate"],
    "Creative": ["UI/UX Designer", "Content Creator"],
    "Government Jobs": ["Civil Services", "Public Sector Officer"],
    "Business": ["Entrepreneur", "Sales & Marketing Associate"],
}

SKILLS_BY_INTEREST = {
    "Technical": ["Programming", "Data Structures"],
    "Research": ["Scientific Writing", "Statistics"],
    "Management": ["Leadership", "Excel & Reporting"],
    "Creative": ["Design Tools", "Storytelling"],
    "Government Jobs": ["General Studies", "Current Affairs"],
    "Business": ["Financial Literacy", "Negotiation"],
}

NEXT_PROGRAMS: Dict[tuple, List[str]] = {
    (EducationLevel.TENTH_PASS, None): ["Class 11-12 Science (PCM/PCB)", "Class 11-12 Commerce", "Polytechnic Diploma"],
    (EducationLevel.TWELFTH_PASS, None): ["B.Tech / BE", "BSc", "B.Com / BBA", "BA"],
    (EducationLevel.DIPLOMA, EducationStatus.STUDYING): ["Complete Diploma", "B.Tech lateral entry (after Diploma)"],
    (EducationLevel.DIPLOMA, EducationStatus.COMPLETED): ["B.Tech lateral entry"],
    (EducationLevel.BACHELOR, EducationStatus.STUDYING): ["Prepare for GATE / CAT / JAM"],
    (EducationLevel.BACHELOR, EducationStatus.COMPLETED): ["MTech", "MSc", "MBA"],
    (EducationLevel.MASTER, EducationStatus.STUDYING): ["PhD programs", "Research assistantships"],
    (EducationLevel.MASTER, EducationStatus.COMPLETED): ["PhD", "Industry research roles"],
}

NEED_BASED_INCOMES = {"Below 2 Lakhs", "2-5 Lakhs"}


def _academic_mark(academic: Dict[str, Any]) -> Optional[float]:
    """Best-effort percentage from whichever mark field the intake carries."""
    for name, scale in (("percentage", 1), ("currentCGPA", 10), ("finalCGPA", 10)):
        value = academic.get(name)
        if value in (None, ""):
            continue
        try:
            return float(value) * scale
        except (TypeError, ValueError):
            return None
    return None


class RuleBasedRecommendationProducer:
    """Deterministic recommendations from fixed tables; used when no LLM is configured."""

    async def produce(self, source_kind: SourceKind, payload: Dict[str, Any]) -> Dict[str, Any]:
        if source_kind == SourceKind.ASSESSMENT:
            return self._from_scores(payload.get("scores") or {}, payload.get("dimensions") or {})
        return self._from_intake(payload)

    def _from_scores(self, scores: Dict[str, int], dimensions: Dict[str, Dict[str, int]]) -> Dict[str, Any]:
        top = rank_categories(scores)[:2]

        career_paths = []
        for category in top:
            for career in CAREERS_BY_CATEGORY.get(category, []):
                career_paths.append({**career, "match_percentage": scores[category]})

        strengths = [STRENGTH_LABELS[c] for c in top if c in STRENGTH_LABELS]

        interests = dimensions.get("interest") or {}
        if interests:
            interest_type = rank_categories(interests)[0]
            for career in CAREERS_BY_INTEREST_TYPE.get(interest_type, []):
                career_paths.append({**career, "match_percentage": interests[interest_type]})

        aptitudes = dimensions.get("aptitude") or {}
        if aptitudes:
            aptitude_type = rank_categories(aptitudes)[0]
            if aptitude_type in APTITUDE_STRENGTHS and aptitudes[aptitude_type] > 0:
                strengths.append(APTITUDE_STRENGTHS[aptitude_type])

        if scores.get("academic", 0) >= 70 and scores.get("aptitude", 0) >= 60:
            streams = [{"stream": "Science (PCM)", "reasoning": "High academic and aptitude scores"}]
        elif scores.get("aptitude", 0) >= 60:
            streams = [{"stream": "Commerce", "reasoning": "Strong aptitude with room to apply it to business"}]
        else:
            streams = [{"stream": "Arts/Humanities", "reasoning": "Interests and personality favour people-focused study"}]

        return {
            "career_paths": career_paths,
            "strengths": strengths,
            "recommended_streams": streams,
            "skill_development": [SKILLS_BY_CATEGORY[c] for c in top if c in SKILLS_BY_CATEGORY],
            "confidence_score": 70 if scores else 50,
        }

    def _from_intake(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        level = EducationLevel(payload["educationLevel"])
        status_raw = payload.get("educationStatus")
        status = EducationStatus(status_raw) if status_raw else None
        academic = payload.get("academicData") or {}
        interest = payload.get("careerInterest", "")
        mark = _academic_mark(academic)

        scholarships = []
        if payload.get("familyIncome") in NEED_BASED_INCOMES:
            scholarships.append({"type": "Need Based", "name": "National Scholarship Portal (NSP) schemes", "eligibility": "Family income below the scheme limit"})
        if mark is not None and mark >= 80:
            scholarships.append({"type": "Merit Based", "name": "INSPIRE Scholarship", "eligibility": "Top performers in science streams"})

        programs = NEXT_PROGRAMS.get((level, status)) or NEXT_PROGRAMS.get((level, None)) or []
        confidence = 60 + (10 if mark is not None else 0) + (10 if status is not None else 0)

        return {
            "scholarships": scholarships,
            "higher_education": [{"program": p} for p in programs],
            "career_paths": [{"title": t} for t in CAREERS_BY_INTEREST.get(interest, [])],
            "skill_development": [{"category": interest or "General", "skills": SKILLS_BY_INTEREST.get(interest, ["Communication"])}],
            "confidence_score": confidence,
        }


def build_producer(kind: str = settings.recommendation_producer) -> RecommendationProducer:
    if kind == "llm":
        logger.info(f"Using LLM recommendation producer ({settings.llm_model})")
        return LLMRecommendationProducer()
    if kind != "rules":
        logger.warning(f"Unknown RECOMMENDATION_PRODUCER '{kind}', falling back to rule-based recommendations")
    return RuleBasedRecommendationProducer()
