# Per-question analysis and recommendation generation with a deterministic fallback
from __future__ import annotations
from typing import Iterator, Optional, Sequence
import logging

from ai_client import AIClient
from aggregation import DISAGREE, NEGATIVE_EXPERIENCE, FrequencyResult, classify_priority, frequency
from errors import (
    AIAccessDeniedError, AIAuthError, AIQuotaError, AIRateLimitError, AIServiceError, AIUsageLimitError,
)
from prompts import analysis_prompt, build_messages, build_system_prompt, recommendation_prompt
from schemas import QuestionRecommendation, SurveyResponse
from survey_schema import TEACHER, Question, Section, question_sort_key, questions_for

logger = logging.getLogger(__name__)

DEFAULT_SCHOOL_NAME = "el colegio"

# Failures that end AI use for the rest of a run; other AI errors are retried per question
STICKY_AI_ERRORS = (AIAuthError, AIAccessDeniedError, AIQuotaError, AIRateLimitError, AIUsageLimitError)


# ------------------------
# Deterministic fallback text
# ------------------------
def basic_analysis(question: Question, result: FrequencyResult, role: str) -> str:
    if not result.total:
        return "No hay datos suficientes para analizar esta pregunta."
    top_value, top_count = result.top_response
    top_pct = top_count / result.total * 100
    who = "docentes" if role == TEACHER else "estudiantes"
    options = len(result.counts)
    spread = (
        f"Las respuestas se distribuyen entre {options} opciones diferentes."
        if options > 1
        else "Hay consenso en las respuestas."
    )
    return f'El {top_pct:.1f}% de los {who} respondió "{top_value}" ({top_count} de {result.total} respuestas). {spread}'


def basic_recommendation(question: Question, result: FrequencyResult) -> str:
    field = question.field
    if field == "bullyingProblem" and result.count("Sí") > 0:
        return (
            "Establecer un Comité de Convivencia Escolar liderado por Orientación con reuniones quincenales. "
            "Implementar protocolo de detección temprana mediante observadores de patio capacitados, intervención "
            "en 24 horas y seguimiento semanal por 4 semanas. Meta: reducir incidentes reportados en 40% en 6 meses."
        )
    if field == "bullyingProblemTeacher" and result.count("Sí") > 0:
        return (
            "Crear un protocolo específico de convivencia docente-estudiantil coordinado por Dirección. "
            "Capacitar al equipo directivo en manejo de conflictos y establecer canales de denuncia confidencial. "
            "Realizar talleres de comunicación asertiva para docentes cada trimestre."
        )
    if field == "schoolSafety" and sum(result.count(v) for v in DISAGREE) > result.total * 0.2:
        return (
            "Reforzar la supervisión en recreos asignando 2 inspectores adicionales por turno. Implementar rondas "
            "de seguridad cada 30 minutos en zonas críticas y establecer puntos de encuentro seguros claramente "
            "señalizados. Revisar protocolos de emergencia trimestralmente."
        )
    if field == "generalExperience" and sum(result.count(v) for v in NEGATIVE_EXPERIENCE) > 0:
        return (
            "Desarrollar un plan de mejora del clima escolar liderado por UTP. Crear espacios de diálogo estudiantil "
            "mensuales, implementar actividades de integración inter-cursos y establecer un sistema de "
            "reconocimiento a logros académicos y de convivencia."
        )
    if field == "teacherHappiness" and sum(result.count(v) for v in DISAGREE) > 0:
        return (
            "Implementar un programa de reconocimiento docente coordinado por Dirección. Establecer reuniones de "
            "retroalimentación positiva mensuales, crear espacios de descanso mejorados y desarrollar un plan de "
            "desarrollo profesional personalizado para cada docente."
        )
    if field == "stressFrequency" and result.count("Constantemente") > 0:
        return (
            "Activar el programa de bienestar estudiantil con Orientación. Implementar talleres de manejo del "
            "estrés semanales, crear espacios de relajación en el colegio y establecer un sistema de derivación "
            "rápida a profesionales de salud mental cuando sea necesario."
        )
    if field == "teacherStressFrequency" and result.count("Constantemente") > 0:
        return (
            "Desarrollar un programa de bienestar docente coordinado por Recursos Humanos. Implementar pausas "
            "activas durante la jornada, crear espacios de descompresión y establecer un sistema de apoyo entre "
            "pares con reuniones quincenales de contención."
        )
    return (
        f"Revisar y mejorar las políticas relacionadas con {question.text.lower()}. Asignar responsabilidad "
        "específica a UTP o Orientación para desarrollar un plan de acción con metas medibles y seguimiento "
        "mensual durante el próximo semestre."
    )


def sort_by_question_number(items: Sequence) -> list:
    """Order recommendations (or questions) by numeric question number, never by priority."""
    def key(item):
        number = item.question_number if isinstance(item, QuestionRecommendation) else item.number
        return question_sort_key(number)
    return sorted(items, key=key)


# ------------------------
# Builder
# ------------------------
class RecommendationBuilder:
    """Produces one QuestionRecommendation per answered question.

    The AI path sends the analysis and recommendation prompts with the full
    consultant system prompt. Any AIServiceError switches that question to the
    deterministic text and is reported through ``degraded``/``error``; once a
    run has hit an AI failure the remaining questions go straight to the
    fallback so a dead endpoint costs one timeout, not one per question.

    Args:
        ai_client: Completion client.
        school_name: Name used in the consultant framing.
    """

    def __init__(self, ai_client: AIClient, school_name: Optional[str] = None):
        self.ai_client = ai_client
        self.school_name = school_name or DEFAULT_SCHOOL_NAME

    def _fallback(self, question, result, role, priority, error: Optional[AIServiceError]) -> QuestionRecommendation:
        return QuestionRecommendation(
            question_number=question.number,
            question_text=question.text,
            field=question.field,
            section=question.section,
            analysis=basic_analysis(question, result, role),
            recommendation=basic_recommendation(question, result),
            priority=priority,
            degraded=True,
            error=error.message if error else None,
        )

    def build_recommendation(
        self,
        question: Question,
        responses: Sequence[SurveyResponse],
        role: str,
        system_prompt: Optional[str] = None,
        skip_ai: Optional[AIServiceError] = None,
    ) -> QuestionRecommendation:
        """Analysis + recommendation for one question; never raises AIServiceError.

        Args:
            question: Question to analyse.
            responses: Response set already filtered to the audience.
            role: Audience role, used in the fallback wording.
            system_prompt: Prebuilt consultant prompt; built from `responses` when omitted.
            skip_ai: An earlier failure in the same run; go straight to the fallback.
        """
        rec, _ = self._recommend(question, responses, role, system_prompt, skip_ai)
        return rec

    def _recommend(self, question, responses, role, system_prompt=None, skip_ai=None):
        """(recommendation, AI error or None) for one question."""
        result = frequency(responses, question.field)
        priority = classify_priority(question.field, result)
        if skip_ai is not None:
            return self._fallback(question, result, role, priority, skip_ai), skip_ai

        system = system_prompt or build_system_prompt(responses, self.school_name)
        try:
            analysis = self.ai_client.generate(build_messages(system, [], analysis_prompt(question, result)))
            recommendation = self.ai_client.generate(
                build_messages(system, [], recommendation_prompt(question, result))
            )
        except AIServiceError as exc:
            logger.warning("Using fallback text for question %s: %s", question.number, exc.message)
            return self._fallback(question, result, role, priority, exc), exc

        return QuestionRecommendation(
            question_number=question.number,
            question_text=question.text,
            field=question.field,
            section=question.section,
            analysis=analysis,
            recommendation=recommendation,
            priority=priority,
        ), None

    def questions(self, role: str, custom_sections: Optional[Sequence[Section]] = None) -> list[Question]:
        if custom_sections:
            return sort_by_question_number([q for s in custom_sections for q in s.questions])
        return sort_by_question_number(questions_for(role))

    def iter_recommendations(
        self,
        responses: Sequence[SurveyResponse],
        role: str,
        custom_sections: Optional[Sequence[Section]] = None,
    ) -> Iterator[QuestionRecommendation]:
        """Yield recommendations one at a time in question-number order.

        Questions nobody answered are skipped. After an account-level AI failure
        (auth, access, quota, rate or usage limit) the remaining questions use the
        fallback text directly; transient failures only degrade their own question.
        """
        responses = list(responses)
        system = build_system_prompt(responses, self.school_name)
        failure: Optional[AIServiceError] = None
        for question in self.questions(role, custom_sections):
            if not frequency(responses, question.field).total:
                continue
            rec, error = self._recommend(question, responses, role, system_prompt=system, skip_ai=failure)
            if failure is None and isinstance(error, STICKY_AI_ERRORS):
                failure = error
            yield rec

    def build_all(
        self,
        responses: Sequence[SurveyResponse],
        role: str,
        custom_sections: Optional[Sequence[Section]] = None,
    ) -> list[QuestionRecommendation]:
        recs = list(self.iter_recommendations(responses, role, custom_sections))
        logger.info(
            "Built %d recommendations for %s (%d degraded)",
            len(recs), self.school_name, sum(1 for r in recs if r.degraded),
        )
        return recs
