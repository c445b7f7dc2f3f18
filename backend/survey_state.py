# Section-by-section questionnaire driver and the in-process session registry
from __future__ import annotations
from typing import Optional, Sequence
import logging
import threading
import time
import uuid

import config
from errors import (
    FormValidationError, IncompleteSurveyError, NavigationBlockedError, NotFoundError, UnknownSectionError,
)
from schemas import SurveyResponse
from survey_schema import (
    CUSTOM_FIELD_PREFIX, METADATA_FIELDS, SECTION_NAMES, STUDENT, TEACHER, Question, Section, is_visible, schema_for,
)

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class SurveyStateMachine:
    """Drives one respondent through the ordered sections of a survey.

    Completion is computed from the answers, never stored: a section is complete
    when every visible required question in it has a non-empty answer. Forward
    navigation is gated on completion, backward navigation is always allowed.

    Args:
        role: "student" or "teacher".
        school_code: Owning school.
        survey_code: Survey being answered.
        course: Student course (required for students on the static schema).
        letter: Student section letter (required for students on the static schema).
        sections: ``None`` walks the static schema for ``role``. A sequence walks
            a custom survey; an empty sequence walks the standard section ids
            with no questions, so every section is trivially complete.
    """

    def __init__(
        self,
        role: str,
        school_code: str,
        survey_code: str,
        course: Optional[str] = None,
        letter: Optional[str] = None,
        sections: Optional[Sequence[Section]] = None,
    ):
        self.role = role
        self.school_code = school_code
        self.survey_code = survey_code
        self.custom = sections is not None
        if sections is None:
            self.sections: tuple[Section, ...] = schema_for(role)
            if role == STUDENT and not (course and letter):
                raise ValueError("course and letter are required for student surveys")
        elif len(sections) == 0:
            self.sections = tuple(Section(id=sid, name=name) for sid, name in SECTION_NAMES)
        else:
            self.sections = tuple(sections)
        self.course = course if role != TEACHER else None
        self.letter = letter if role != TEACHER else None
        self.answers: dict[str, str] = {}
        self.current_section_id = self.sections[0].id if self.sections else ""
        self._index = {s.id: i for i, s in enumerate(self.sections)}

    # ------------------------
    # Answers
    # ------------------------
    def set_answer(self, field: str, value: str) -> None:
        """Store one answer. Unknown fields are carried but never gate completion.

        Raises:
            FormValidationError: If ``field`` names a response metadata key.
        """
        if field in METADATA_FIELDS:
            raise FormValidationError({field: f"'{field}' no es un campo de respuesta válido"})
        self.answers[field] = "" if value is None else str(value)

    def set_answers(self, answers: dict) -> None:
        # all-or-nothing: a reserved key rejects the whole batch
        reserved = sorted(set(answers).intersection(METADATA_FIELDS))
        if reserved:
            raise FormValidationError({k: f"'{k}' no es un campo de respuesta válido" for k in reserved})
        for field, value in answers.items():
            self.set_answer(field, value)

    # ------------------------
    # Completion
    # ------------------------
    def _section(self, section_id: str) -> Section:
        try:
            return self.sections[self._index[section_id]]
        except KeyError:
            raise UnknownSectionError(section_id)

    def visible_questions(self, section_id: str) -> list[Question]:
        return [q for q in self._section(section_id).questions if is_visible(q, self.answers)]

    def is_section_complete(self, section_id: str) -> bool:
        for q in self.visible_questions(section_id):
            if q.required and not self.answers.get(q.field, "").strip():
                return False
        return True

    def incomplete_sections(self) -> list[str]:
        return [s.id for s in self.sections if not self.is_section_complete(s.id)]

    def is_complete(self) -> bool:
        return not self.incomplete_sections()

    def progress(self) -> float:
        """Percentage of sections currently complete."""
        if not self.sections:
            return 100.0
        done = sum(1 for s in self.sections if self.is_section_complete(s.id))
        return round(done / len(self.sections) * 100, 1)

    # ------------------------
    # Navigation
    # ------------------------
    def can_navigate_to(self, section_id: str) -> bool:
        target = self._index.get(section_id)
        if target is None:
            raise UnknownSectionError(section_id)
        current = self._index[self.current_section_id]
        if target <= current:
            return True
        if target == current + 1:
            return self.is_section_complete(self.current_section_id)
        return all(self.is_section_complete(s.id) for s in self.sections[:target])

    def navigate(self, section_id: str) -> str:
        if not self.can_navigate_to(section_id):
            raise NavigationBlockedError()
        self.current_section_id = section_id
        return section_id

    def next_section(self) -> str:
        current = self._index[self.current_section_id]
        if current + 1 >= len(self.sections):
            return self.current_section_id
        return self.navigate(self.sections[current + 1].id)

    def previous_section(self) -> str:
        current = self._index[self.current_section_id]
        if current > 0:
            self.current_section_id = self.sections[current - 1].id
        return self.current_section_id

    # ------------------------
    # Finalization
    # ------------------------
    def _answered_visible(self) -> dict[str, str]:
        """Answers with empty values and hidden conditional questions removed."""
        hidden = {
            q.field
            for s in self.sections
            for q in s.questions
            if not is_visible(q, self.answers)
        }
        return {
            k: v for k, v in self.answers.items()
            if v.strip() and k not in hidden and k not in METADATA_FIELDS
        }

    def complete(self, now_ms: Optional[int] = None) -> SurveyResponse:
        """Freeze the answer set into a SurveyResponse.

        Raises:
            IncompleteSurveyError: If any section is still incomplete.
        """
        missing = self.incomplete_sections()
        if missing:
            raise IncompleteSurveyError(missing)
        answers, extensions = {}, {}
        for k, v in self._answered_visible().items():
            (extensions if k.startswith(CUSTOM_FIELD_PREFIX) else answers)[k] = v
        logger.debug("Survey %s completed for school %s (%d answers)", self.survey_code, self.school_code, len(answers) + len(extensions))
        return SurveyResponse(
            school_code=self.school_code,
            survey_code=self.survey_code,
            role=self.role,
            course=self.course,
            letter=self.letter,
            timestamp=now_ms if now_ms is not None else _now_ms(),
            answers=answers,
            extensions=extensions,
        )

    def status(self) -> dict:
        return {
            "role": self.role,
            "school_code": self.school_code,
            "survey_code": self.survey_code,
            "custom": self.custom,
            "current_section": self.current_section_id,
            "progress": self.progress(),
            "sections": [
                {
                    "id": s.id,
                    "name": s.name,
                    "complete": self.is_section_complete(s.id),
                    "can_navigate": self.can_navigate_to(s.id),
                }
                for s in self.sections
            ],
            "answers": dict(self.answers),
        }


class SessionRegistry:
    """Lock-guarded map of in-progress survey sessions.

    Each lookup refreshes the session's last-touched time; sessions idle for
    longer than ``ttl_seconds`` are evicted on the next ``create`` or ``get``.
    """

    def __init__(self, ttl_seconds: float = config.SURVEY_SESSION_TTL_MINUTES * 60, clock=time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, tuple[SurveyStateMachine, float]] = {}

    def _evict_expired(self, now: float) -> None:
        # caller holds the lock
        expired = [sid for sid, (_, touched) in self._sessions.items() if now - touched > self.ttl_seconds]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Evicted %d idle survey sessions", len(expired))

    def create(self, machine: SurveyStateMachine) -> str:
        session_id = uuid.uuid4().hex
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._sessions[session_id] = (machine, now)
        return session_id

    def get(self, session_id: str) -> SurveyStateMachine:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            entry = self._sessions.get(session_id)
            if entry is not None:
                self._sessions[session_id] = (entry[0], now)
        if entry is None:
            raise NotFoundError("Sesión de encuesta no encontrada")
        return entry[0]

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
