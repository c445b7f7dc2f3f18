# School / survey code validation and admin credential checks
from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
import logging
import time

from fastapi import Depends

from schemas import CodeCheck
from security import check_password, hash_password
from store import Repository, get_repository
from survey_schema import PREDEFINED_SURVEYS, STUDENT, sections_from_dicts

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredefinedSurvey:
    code: str
    school_code: str
    name: str
    description: str
    type: str


@dataclass(frozen=True)
class FallbackAdmin:
    email: str
    password: str
    first_name: str
    last_name: str
    school_code: str


SCHOOLS = {
    "CSA123": "Colegio Saucache Arica",
    "CSJ123": "Colegio San Jorge Arica",
    "PRB123": "Colegio Prueba",
}

SURVEYS = (
    PredefinedSurvey(
        code="EAE123",
        school_code="CSA123",
        name="Encuesta Ambiente Escolar - Estudiantes (Segundo Semestre 2025)",
        description="Evaluación integral del ambiente escolar desde la perspectiva estudiantil - Segundo Semestre 2025",
        type="student",
    ),
    PredefinedSurvey(
        code="EAE1234",
        school_code="CSA123",
        name="Encuesta Ambiente Escolar - Docentes (Segundo Semestre 2025)",
        description="Evaluación del ambiente escolar desde la perspectiva docente - Segundo Semestre 2025",
        type="teacher",
    ),
)

FALLBACK_ADMINS = (
    FallbackAdmin("ssotod@udd.cl", "0702977", "Sebastián", "Soto de la Plaza", "CSA123"),
    FallbackAdmin("admin@csj.cl", "admin123", "Administrador", "San Jorge", "CSJ123"),
    FallbackAdmin("admin@prueba.cl", "prueba123", "Administrador", "Prueba", "PRB123"),
)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


@lru_cache(maxsize=None)
def _fallback_hash(password: str) -> str:
    return hash_password(password)


class CodeValidator:
    """Validates school and survey codes against static tables plus custom surveys.

    Args:
        repository: Used to resolve custom surveys and stored admin users.
        schools: {school_code: display name}.
        surveys: Whitelisted predefined surveys.
        fallback_admins: Built-in admin accounts provisioned on first login.
    """

    def __init__(
        self,
        repository: Repository,
        schools: Optional[dict] = None,
        surveys: tuple = SURVEYS,
        fallback_admins: tuple = FALLBACK_ADMINS,
    ):
        self.repository = repository
        self.schools = dict(SCHOOLS if schools is None else schools)
        self.surveys = {f"{s.code}-{s.school_code}": s for s in surveys}
        self.fallback_admins = {a.email.lower(): a for a in fallback_admins}

    # ------------------------
    # Schools
    # ------------------------
    def is_authorized_school(self, school_code: str) -> bool:
        return normalize_code(school_code) in self.schools

    def validate_school_code(self, school_code: str) -> CodeCheck:
        code = normalize_code(school_code)
        if code in self.schools:
            return CodeCheck(valid=True, name=self.schools[code])
        return CodeCheck(valid=False)

    def school_display_info(self, school_code: str) -> dict:
        code = normalize_code(school_code)
        return {"code": code, "name": self.schools.get(code, "Colegio no encontrado")}

    # ------------------------
    # Surveys
    # ------------------------
    def available_surveys(self) -> list[dict]:
        return [
            {
                "code": s.code,
                "name": s.name,
                "school_code": s.school_code,
                "school_name": self.schools.get(s.school_code, ""),
                "type": s.type,
            }
            for s in self.surveys.values()
        ]

    def surveys_for_school(self, school_code: str) -> list[dict]:
        code = normalize_code(school_code)
        return [
            {"code": s["code"], "name": s["name"], "type": s["type"]}
            for s in self.available_surveys()
            if s["school_code"] == code
        ]

    def predefined(self, survey_code: str, school_code: str) -> Optional[PredefinedSurvey]:
        return self.surveys.get(f"{normalize_code(survey_code)}-{normalize_code(school_code)}")

    def validate_survey_code(self, survey_code: str, school_code: str) -> CodeCheck:
        """Whitelist first, then an active custom survey of an authorized school."""
        survey, school = normalize_code(survey_code), normalize_code(school_code)
        hit = self.predefined(survey, school)
        if hit:
            return CodeCheck(valid=True, name=hit.name, description=hit.description, type=hit.type)
        if not self.is_authorized_school(school):
            return CodeCheck(valid=False)
        custom = self.repository.find_active_custom_survey(survey, school)
        if custom:
            return CodeCheck(
                valid=True,
                name=custom.get("name"),
                description=custom.get("description") or "",
                type="custom",
                extra={"custom_survey_id": custom.get("id")},
            )
        return CodeCheck(valid=False)

    def is_custom_survey(self, survey_code: str, school_code: str) -> bool:
        """True for an active custom survey of the school; predefined codes never are."""
        survey, school = normalize_code(survey_code), normalize_code(school_code)
        if survey in PREDEFINED_SURVEYS or self.predefined(survey, school):
            return False
        return self.repository.find_active_custom_survey(survey, school) is not None

    def validate_survey_ownership(self, survey: Optional[dict], school_code: str) -> bool:
        return bool(survey) and normalize_code(survey.get("schoolCode")) == normalize_code(school_code)

    def resolve_survey(self, survey_code: str, school_code: str) -> tuple[str, Optional[str], Optional[tuple]]:
        """Return (kind, role, sections) for a survey code; predefined codes win.

        kind is "predefined", "custom" or "unknown". Predefined surveys walk the
        static schema (sections is None); custom surveys carry their own sections
        and role.
        """
        survey, school = normalize_code(survey_code), normalize_code(school_code)
        hit = self.predefined(survey, school)
        if hit:
            return "predefined", hit.type, None
        if survey in PREDEFINED_SURVEYS:
            return "predefined", STUDENT, None
        custom = self.repository.find_active_custom_survey(survey, school)
        if custom is None:
            return "unknown", None, None
        return "custom", custom.get("surveyType") or STUDENT, sections_from_dicts(custom.get("sections") or [])

    def audit_info(self) -> dict:
        surveys = self.available_surveys()
        by_school: dict[str, int] = {}
        for s in surveys:
            by_school[s["school_code"]] = by_school.get(s["school_code"], 0) + 1
        return {
            "total_surveys": len(surveys),
            "surveys_by_school": by_school,
            "last_update": datetime.now(timezone.utc).isoformat(),
            "predefined_surveys": [{"code": s["code"], "school": s["school_code"], "type": s["type"]} for s in surveys],
        }

    # ------------------------
    # Credentials
    # ------------------------
    def validate_admin_credentials(self, email: str, password: str) -> tuple[bool, Optional[dict]]:
        """Check stored users first, then the built-in accounts.

        A built-in account that authenticates is provisioned into the store so
        that session tokens can refer to it by id.
        """
        key = (email or "").strip().lower()
        user = self.repository.find_user_by_email(key)
        if user:
            if check_password(password, user.get("passwordHash", "")):
                return True, user
            return False, None

        builtin = self.fallback_admins.get(key)
        if builtin is None or not check_password(password, _fallback_hash(builtin.password)):
            return False, None
        doc = self.repository.create_user({
            "email": builtin.email,
            "passwordHash": _fallback_hash(builtin.password),
            "firstName": builtin.first_name,
            "lastName": builtin.last_name,
            "schoolCode": builtin.school_code,
            "schoolName": self.schools.get(builtin.school_code, ""),
            "userType": "admin",
            "createdAt": int(time.time() * 1000),
        })
        logger.info("Provisioned built-in admin account for school %s", builtin.school_code)
        return True, doc


def get_validator(repo: Repository = Depends(get_repository)) -> CodeValidator:
    return CodeValidator(repo)
