# School-authored surveys: creation, editing, code generation and lookup
from __future__ import annotations
from typing import Optional
import logging
import secrets
import string
import time

from fastapi import Depends

from errors import FormValidationError, NotFoundError, PermissionDeniedError
from schemas import CustomSectionIn, CustomSurveyCreate, CustomSurveyOut, CustomSurveyUpdate
from store import Repository, get_repository
from survey_schema import (
    CUSTOM_FIELD_PREFIX, PREDEFINED_SURVEYS, Question, Section, schema_as_dict, validate_schema,
)
from validation import CodeValidator, get_validator, normalize_code

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_uppercase


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_survey_code(school_code: str, now_ms: Optional[int] = None) -> str:
    """``{SCHOOL}-{last 6 digits of epoch ms}-{3 base-36 chars}``, e.g. ``CSA123-482913-K7Q``."""
    stamp = str(now_ms if now_ms is not None else _now_ms())[-6:]
    suffix = "".join(secrets.choice(_BASE36) for _ in range(3))
    return f"{normalize_code(school_code)}-{stamp}-{suffix}"


def _prefixed(name: Optional[str]) -> Optional[str]:
    if not name:
        return name
    return name if name.startswith(CUSTOM_FIELD_PREFIX) else CUSTOM_FIELD_PREFIX + name


def build_sections(sections: list[CustomSectionIn]) -> tuple[Section, ...]:
    """Turn request sections into schema objects, namespacing every field under ``custom_``.

    Raises:
        SchemaDefinitionError: On duplicate fields or a guard that is not an earlier field.
    """
    out = []
    for raw in sections:
        qs = tuple(
            Question(
                number=q.number,
                text=q.text,
                field=_prefixed(q.field.strip()),
                options=tuple(q.options),
                section=raw.id,
                required=q.required,
                conditional_field=_prefixed(q.conditional_field),
                conditional_value=q.conditional_value,
            )
            for q in raw.questions
        )
        out.append(Section(id=raw.id, name=raw.name, questions=qs))
    built = tuple(out)
    validate_schema(built)
    return built


def to_out(doc: dict) -> CustomSurveyOut:
    return CustomSurveyOut(
        id=doc["id"],
        school_code=doc.get("schoolCode", ""),
        survey_code=doc.get("surveyCode", ""),
        name=doc.get("name", ""),
        description=doc.get("description"),
        survey_type=doc.get("surveyType") or "student",
        is_active=bool(doc.get("isActive", True)),
        created_by=doc.get("createdBy"),
        created_at=int(doc.get("createdAt") or 0),
        last_modified=int(doc.get("lastModified") or 0),
        sections=doc.get("sections") or [],
    )


class CustomSurveyService:
    def __init__(self, repository: Repository, validator: Optional[CodeValidator] = None):
        self.repository = repository
        self.validator = validator or CodeValidator(repository)

    def _owned(self, admin: dict, survey_id: str) -> dict:
        doc = self.repository.get_custom_survey(survey_id)
        if not doc:
            raise NotFoundError("Encuesta no encontrada")
        if not self.validator.validate_survey_ownership(doc, admin.get("schoolCode", "")):
            raise PermissionDeniedError("Esta encuesta pertenece a otro colegio")
        return doc

    def _code_in_use(self, code: str, school_code: str, exclude_id: Optional[str] = None) -> bool:
        if code in PREDEFINED_SURVEYS:
            return True
        return any(
            d.get("surveyCode") == code and d.get("id") != exclude_id
            for d in self.repository.list_custom_surveys(school_code)
        )

    def create(self, admin: dict, data: CustomSurveyCreate) -> dict:
        school = admin.get("schoolCode", "")
        if not (data.name or "").strip():
            raise FormValidationError({"name": "El nombre de la encuesta es requerido"})
        sections = build_sections(data.sections)
        code = normalize_code(data.survey_code) or generate_survey_code(school)
        if self._code_in_use(code, school):
            raise FormValidationError({"survey_code": "Ya existe una encuesta con este código"})

        now = _now_ms()
        doc = {
            "name": data.name.strip(),
            "description": data.description or "",
            "surveyCode": code,
            "schoolCode": school,
            "surveyType": data.survey_type,
            "sections": schema_as_dict(sections),
            "isActive": data.is_active,
            "createdAt": now,
            "createdBy": admin.get("id"),
            "lastModified": now,
        }
        doc["id"] = self.repository.save_custom_survey(doc)
        logger.info("Created custom survey %s (%s) for school %s", doc["id"], code, school)
        return doc

    def update(self, admin: dict, survey_id: str, data: CustomSurveyUpdate) -> dict:
        self._owned(admin, survey_id)
        changes: dict = {"lastModified": _now_ms()}
        if data.name is not None:
            if not data.name.strip():
                raise FormValidationError({"name": "El nombre de la encuesta es requerido"})
            changes["name"] = data.name.strip()
        if data.description is not None:
            changes["description"] = data.description
        if data.survey_type is not None:
            changes["surveyType"] = data.survey_type
        if data.is_active is not None:
            changes["isActive"] = data.is_active
        if data.sections is not None:
            changes["sections"] = schema_as_dict(build_sections(data.sections))
        return self.repository.update_custom_survey(survey_id, changes)

    def delete(self, admin: dict, survey_id: str) -> None:
        self._owned(admin, survey_id)
        self.repository.delete_custom_survey(survey_id)
        logger.info("Deleted custom survey %s", survey_id)

    def get_active(self, survey_code: str, school_code: str) -> Optional[dict]:
        return self.repository.find_active_custom_survey(normalize_code(survey_code), normalize_code(school_code))

    def list_for_school(self, school_code: str) -> list[dict]:
        return self.repository.list_custom_surveys(school_code)

    def list_all(self) -> list[dict]:
        return self.repository.list_all_custom_surveys()


def get_custom_survey_service(
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
) -> CustomSurveyService:
    return CustomSurveyService(repo, validator)
