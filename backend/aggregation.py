# Frequency breakdowns, cross-tabulations, priority rules and indicators over response sets
from __future__ import annotations
from dataclasses import dataclass
from typing import Callable, Iterable, Optional, Sequence

from schemas import SurveyResponse
from survey_schema import CUSTOM_FIELD_PREFIX, STUDENT, TEACHER, section_fields, section_ids, standard_fields

NO_DATA = "Sin datos"


@dataclass(frozen=True)
class FrequencyResult:
    counts: dict
    total: int
    percentages: dict
    top_response: tuple

    def count(self, value: str) -> int:
        return self.counts.get(value, 0)

    def share(self, *values: str) -> float:
        if not self.total:
            return 0.0
        return sum(self.count(v) for v in values) / self.total

    def as_dict(self) -> dict:
        return {
            "responses": dict(self.counts),
            "total": self.total,
            "percentages": dict(self.percentages),
            "topResponse": {"value": self.top_response[0], "count": self.top_response[1]},
        }


def _pct(count: int, total: int) -> str:
    return f"{count / total * 100:.1f}%"


def _field_value(response, field: str) -> str:
    if isinstance(response, SurveyResponse):
        return response.value(field)
    return (response or {}).get(field) or ""


def frequency(responses: Iterable, field: str) -> FrequencyResult:
    """Count non-empty answers to `field`.

    The top response is the value with the highest count; ties keep the value
    encountered first. An empty input yields ("Sin datos", 0) and no percentages.
    """
    counts: dict[str, int] = {}
    for r in responses:
        value = _field_value(r, field)
        if value:
            counts[value] = counts.get(value, 0) + 1
    total = sum(counts.values())
    top = (NO_DATA, 0)
    for value, c in counts.items():
        if c > top[1]:
            top = (value, c)
    percentages = {k: _pct(c, total) for k, c in counts.items()} if total else {}
    return FrequencyResult(counts=counts, total=total, percentages=percentages, top_response=top)


def cross_tabulate(responses: Iterable, field_a: str, field_b: str) -> dict[str, dict[str, int]]:
    table: dict[str, dict[str, int]] = {}
    for r in responses:
        a, b = _field_value(r, field_a), _field_value(r, field_b)
        if a and b:
            row = table.setdefault(a, {})
            row[b] = row.get(b, 0) + 1
    return table


def segment_by(responses: Iterable, predicate: Callable[[SurveyResponse], bool]) -> list:
    return [r for r in responses if predicate(r)]


def is_role(response: SurveyResponse, role: str) -> bool:
    # records without a role predate the teacher survey and count as students
    if role == STUDENT:
        return response.role in (STUDENT, None, "")
    return response.role == role


def filter_responses(
    responses: Iterable[SurveyResponse],
    survey_code: Optional[str] = None,
    role: Optional[str] = None,
    course: Optional[str] = None,
    letter: Optional[str] = None,
) -> list[SurveyResponse]:
    out = list(responses)
    if survey_code:
        out = segment_by(out, lambda r: r.survey_code == survey_code)
    if role:
        out = segment_by(out, lambda r: is_role(r, role))
    if course:
        out = segment_by(out, lambda r: r.course == course)
    if letter:
        out = segment_by(out, lambda r: r.letter == letter)
    return out


# ------------------------
# Structured analyses (fed to prompts)
# ------------------------
def analyze_section(responses: Sequence, fields: Iterable[str]) -> dict:
    return {f: frequency(responses, f).as_dict() for f in fields}


def analyze_by_course(responses: Sequence[SurveyResponse]) -> dict:
    courses = []
    for r in responses:
        if r.course and r.course not in courses:
            courses.append(r.course)
    out = {}
    for course in courses:
        subset = [r for r in responses if r.course == course]
        out[course] = {
            "totalResponses": len(subset),
            "demographics": frequency(subset, "gender").counts,
            "safety": frequency(subset, "schoolSafety").counts,
            "experience": frequency(subset, "generalExperience").counts,
            "stress": frequency(subset, "stressFrequency").counts,
            "bullying": frequency(subset, "bullyingProblem").counts,
        }
    return out


CORRELATIONS = {
    STUDENT: (
        ("studentSafetyVsExperience", "schoolSafety", "generalExperience"),
        ("studentBullyingVsStress", "bullyingProblem", "stressFrequency"),
    ),
    TEACHER: (
        ("teacherRecognitionVsHappiness", "teacherRecognition", "teacherHappiness"),
        ("teacherResourcesVsMotivation", "schoolResources", "teachingMotivation"),
    ),
}


def find_correlations(responses: Sequence[SurveyResponse]) -> dict:
    out = {}
    for role, pairs in CORRELATIONS.items():
        subset = filter_responses(responses, role=role)
        if not subset:
            continue
        for name, a, b in pairs:
            out[name] = cross_tabulate(subset, a, b)
    return out


def _yes_share(result: FrequencyResult, group_size: int) -> str:
    # relative to everyone in the group, not only those who answered
    return _pct(result.count("Sí"), group_size) if group_size else "0%"


def compare_perspectives(students: Sequence[SurveyResponse], teachers: Sequence[SurveyResponse]) -> dict:
    if not students or not teachers:
        return {}
    out = {}
    for name, s_field, t_field in (
        ("bullyingPerception", "bullyingProblem", "bullyingProblemTeacher"),
        ("alcoholPerception", "alcoholProblemAtSchool", "alcoholProblemAtSchoolTeacher"),
        ("drugsPerception", "drugsProblemAtSchool", "drugsProblemAtSchoolTeacher"),
    ):
        s, t = frequency(students, s_field), frequency(teachers, t_field)
        out[name] = {
            "students": s.counts,
            "teachers": t.counts,
            "studentYesPercentage": _yes_share(s, len(students)),
            "teacherYesPercentage": _yes_share(t, len(teachers)),
        }
    out["cleanlinessCooperation"] = {
        "students": frequency(students, "cooperateWithCleanliness").counts,
        "teachers": frequency(teachers, "teacherCooperateWithCleanliness").counts,
    }
    return out


def identify_custom_fields(responses: Sequence[SurveyResponse]) -> list[str]:
    """Extension keys outside the static catalogue, in first-seen order."""
    standard = standard_fields()
    names: list[str] = []
    for r in responses:
        for key in r.extensions:
            if key.startswith(CUSTOM_FIELD_PREFIX) and key not in standard and key not in names:
                names.append(key)
    return names


def analyze_custom_fields(responses: Sequence[SurveyResponse], fields: Iterable[str]) -> dict:
    return analyze_section(responses, fields)


def aggregate_state(responses: Sequence[SurveyResponse]) -> dict:
    """Full aggregate snapshot of a response set, rebuilt on demand."""
    students = filter_responses(responses, role=STUDENT)
    teachers = filter_responses(responses, role=TEACHER)
    courses, letters = [], []
    for r in students:
        if r.course and r.course not in courses:
            courses.append(r.course)
        if r.letter and r.letter not in letters:
            letters.append(r.letter)
    custom_fields = identify_custom_fields(responses)
    return {
        "total": len(responses),
        "studentCount": len(students),
        "teacherCount": len(teachers),
        "courses": courses,
        "letters": letters,
        "students": {sid: analyze_section(students, section_fields(STUDENT, sid)) for sid in section_ids(STUDENT)},
        "teachers": {sid: analyze_section(teachers, section_fields(TEACHER, sid)) for sid in section_ids(TEACHER)},
        "byCourse": analyze_by_course(students),
        "perspectives": compare_perspectives(students, teachers),
        "correlations": find_correlations(responses),
        "customFields": custom_fields,
        "customAnalysis": analyze_custom_fields(responses, custom_fields) if custom_fields else {},
    }


# ------------------------
# Priority rules
# ------------------------
DISAGREE = ("En Desacuerdo", "Muy en Desacuerdo")
NEGATIVE_EXPERIENCE = ("Negativa", "Muy negativa")

# (field, priority, predicate); first match wins, order matters
PRIORITY_RULES: tuple = (
    ("bullyingProblem", "high", lambda f: f.count("Sí") > 0),
    ("bullyingProblemTeacher", "high", lambda f: f.count("Sí") > 0),
    ("weaponSeen", "high", lambda f: f.count("Sí") > 0),
    ("witnessedWeapons", "high", lambda f: f.count("Sí") > 0),
    ("physicalAggression", "high", lambda f: f.count("Sí") > 0),
    ("teacherHarassed", "high", lambda f: f.count("Sí") > 0),
    ("stressFrequency", "high", lambda f: f.share("Constantemente") > 0.3),
    ("teacherStressFrequency", "high", lambda f: f.share("Constantemente") > 0.3),
    ("schoolSafety", "high", lambda f: f.share(*DISAGREE) > 0.3),
    ("generalExperience", "medium", lambda f: f.share(*NEGATIVE_EXPERIENCE) > 0.2),
    ("teacherHappiness", "medium", lambda f: f.share(*DISAGREE) > 0.2),
    ("happyAtSchool", "medium", lambda f: f.share(*DISAGREE) > 0.2),
    ("offensiveNames", "medium", lambda f: f.count("Sí") > 0),
    ("rumorsSpread", "medium", lambda f: f.count("Sí") > 0),
    ("witnessedTeacherHarassment", "medium", lambda f: f.count("Sí") > 0),
    ("witnessedStudentHarassment", "medium", lambda f: f.count("Sí") > 0),
    ("sadnessFrequency", "medium", lambda f: f.share("Constantemente") > 0.2),
    ("lonelinessFrequency", "medium", lambda f: f.share("Constantemente") > 0.2),
)


def classify_priority(field: str, result: FrequencyResult) -> str:
    for rule_field, priority, predicate in PRIORITY_RULES:
        if rule_field == field and predicate(result):
            return priority
    return "low"


# ------------------------
# Dashboard indicators
# ------------------------
POSITIVE_VALUES = ("Muy de Acuerdo", "De Acuerdo", "Muy positiva", "Positiva", "Sí")
NEGATIVE_VALUES = (
    "No", "Nunca", "No me he sentido estresado", "No me he sentido triste", "No me he sentido solo",
)

# (field, label, positive): positive=True counts favourable answers, False counts the "problem absent" answers
INDICATORS = {
    STUDENT: (
        ("happyAtSchool", "Felicidad en el Colegio", True),
        ("schoolSafety", "Seguridad Escolar", True),
        ("bullyingProblem", "Problemas de Bullying", False),
        ("stressFrequency", "Frecuencia de Estrés", False),
        ("alcoholProblemAtSchool", "Consumo de Alcohol", False),
        ("bathroomCleaningFrequency", "Limpieza de Baños", True),
    ),
    TEACHER: (
        ("teacherHappiness", "Felicidad Laboral", True),
        ("schoolResources", "Recursos Escolares", True),
        ("bullyingProblemTeacher", "Problemas de Bullying", False),
        ("teacherStressFrequency", "Estrés Docente", False),
        ("alcoholProblemAtSchoolTeacher", "Consumo de Alcohol", False),
        ("cleanEnvironmentProvided", "Ambiente Limpio", True),
    ),
}


def indicator_status(responses: Sequence, field: str, positive: bool = True) -> dict:
    """Favourable share of a field: good >= 70%, warning >= 40% (or no data), else critical."""
    result = frequency(responses, field)
    if not result.total:
        return {"field": field, "percentage": 0.0, "status": "warning", "total": 0}
    favourable = result.share(*(POSITIVE_VALUES if positive else NEGATIVE_VALUES))
    pct = favourable * 100
    status = "good" if pct >= 70 else "warning" if pct >= 40 else "critical"
    return {"field": field, "percentage": round(pct, 1), "status": status, "total": result.total}


def role_indicators(responses: Sequence[SurveyResponse], role: str) -> list[dict]:
    subset = filter_responses(responses, role=role)
    out = []
    for field, label, positive in INDICATORS[role]:
        item = indicator_status(subset, field, positive)
        item["label"] = label
        out.append(item)
    return out
