# Prompt text for the consultant chat model and the per-question analysis/recommendation requests
from __future__ import annotations
from typing import Iterable, Optional, Sequence
import json

from aggregation import FrequencyResult, aggregate_state
from schemas import ChatTurn, SurveyResponse
from survey_schema import Question

_ROLE_MAP = {"user": "user", "ai": "assistant", "assistant": "assistant"}

_STUDENT_BLOCKS = (
    ("general", "DEMOGRAFÍA Y ASISTENCIA (ESTUDIANTES)"),
    ("experience", "EXPERIENCIA ESCOLAR (ESTUDIANTES)"),
    ("security", "SEGURIDAD Y BULLYING (ESTUDIANTES)"),
    ("mental-health", "SALUD MENTAL (ESTUDIANTES)"),
    ("alcohol-drugs", "CONSUMO DE SUSTANCIAS (ESTUDIANTES)"),
    ("cleanliness", "LIMPIEZA (ESTUDIANTES)"),
)
_TEACHER_BLOCKS = (
    ("general", "DEMOGRAFÍA Y EXPERIENCIA (DOCENTES)"),
    ("experience", "EXPERIENCIA LABORAL (DOCENTES)"),
    ("security", "SEGURIDAD Y BULLYING (DOCENTES)"),
    ("mental-health", "SALUD MENTAL (DOCENTES)"),
    ("alcohol-drugs", "CONSUMO DE SUSTANCIAS - PERSPECTIVA DOCENTE"),
    ("cleanliness", "LIMPIEZA (DOCENTES)"),
)

_INSTRUCTIONS = """INSTRUCCIONES PARA RESPONDER COMO CONSULTOR SENIOR:

PERFIL PROFESIONAL:
- Hablas desde la experiencia de haber asesorado 200+ colegios
- Conoces las mejores prácticas del sector educativo chileno
- Entiendes las limitaciones operacionales de los colegios
- Tienes expertise en gestión del cambio y desarrollo organizacional
- Conoces la normativa educacional y los estándares de calidad

ESTILO DE COMUNICACIÓN:
- Tono profesional pero accesible, como consultor senior experimentado
- Evita jerga académica excesiva, usa lenguaje directivo
- Sé específico con datos y porcentajes cuando sea relevante
- Proporciona contexto estratégico y operacional
- No uses emojis bajo ninguna circunstancia
- NUNCA menciones dinero, presupuestos, costos o inversiones

ESTRUCTURA DE RECOMENDACIONES PROFESIONALES:

1. DIAGNÓSTICO ESTRATÉGICO:
   - Identifica el problema central con datos específicos
   - Contextualiza dentro del panorama educativo general
   - Menciona implicaciones para la gestión institucional

2. RECOMENDACIONES ESPECÍFICAS:
   - Acciones concretas con plazos definidos
   - Responsables específicos (UTP, Orientación, Dirección, etc.)
   - Recursos humanos y materiales necesarios
   - Indicadores de seguimiento medibles

3. IMPLEMENTACIÓN PRÁCTICA:
   - Fases de implementación con cronograma
   - Estrategias de comunicación a la comunidad
   - Gestión del cambio y resistencias esperadas
   - Capacitación y desarrollo de competencias

4. SEGUIMIENTO Y EVALUACIÓN:
   - KPIs específicos para medir progreso
   - Frecuencia de monitoreo recomendada
   - Ajustes esperados durante implementación

EJEMPLOS DE RECOMENDACIONES PROFESIONALES:

MALO (genérico): "Implementar un programa anti-bullying"

BUENO (específico): "Establecer un Comité de Convivencia Escolar liderado por Orientación, con reuniones quincenales. Implementar protocolo de 3 fases: detección temprana mediante 4 observadores de patio capacitados, intervención inmediata con entrevistas estructuradas a involucrados en 24 horas, y seguimiento semanal por 4 semanas. Capacitar al equipo en técnicas de mediación escolar. KPI: reducir incidentes reportados en 40% en 6 meses."

CONTEXTO INSTITUCIONAL:
- Propone soluciones escalables y sostenibles
- Incluye estrategias de comunicación a apoderados cuando sea necesario
- Considera el impacto en la carga laboral docente
- Alinea recomendaciones con estándares de calidad educativa
- Enfócate en recursos humanos y organizacionales, no financieros

LONGITUD DE RESPUESTAS:
- Consultas simples: máximo 2 párrafos con recomendaciones específicas
- Consultas complejas: máximo 4 párrafos con plan de acción detallado
- Siempre incluye al menos una acción concreta con responsable y plazo"""


def _dump(data) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def _compact(data) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def build_system_prompt(responses: Sequence[SurveyResponse], school_name: str, state: Optional[dict] = None) -> str:
    """Consultant framing plus the full aggregate snapshot of `responses`.

    Rebuilt from scratch on every call so new responses are always reflected.
    """
    state = state if state is not None else aggregate_state(responses)
    students, teachers = state["students"], state["teachers"]
    custom = bool(state["customFields"])

    parts = [
        "Eres un consultor senior especializado en gestión educativa con 15+ años de experiencia asesorando "
        "sostenedores y directivos de colegios. Tu expertise incluye liderazgo educativo, gestión del cambio "
        "organizacional, desarrollo de políticas institucionales y mejora del clima escolar.",
        f"Tienes acceso completo a los datos de {school_name}: {state['total']} respuestas "
        f"({state['studentCount']} estudiantes, {state['teacherCount']} docentes).",
        "DATOS COMPLETOS DISPONIBLES:",
        f"=== RESPUESTAS DE ESTUDIANTES ({state['studentCount']} respuestas) ===\n"
        f"Cursos: {', '.join(state['courses'])} | Letras: {', '.join(state['letters'])}",
    ]
    parts += [f"{title}:\n{_dump(students.get(sid, {}))}" for sid, title in _STUDENT_BLOCKS]
    parts.append(f"ANÁLISIS POR CURSO (ESTUDIANTES):\n{_dump(state['byCourse'])}")
    parts.append(f"=== RESPUESTAS DE DOCENTES ({state['teacherCount']} respuestas) ===")
    parts += [f"{title}:\n{_dump(teachers.get(sid, {}))}" for sid, title in _TEACHER_BLOCKS]
    parts.append("=== ANÁLISIS COMPARATIVO ===")
    parts.append(f"COMPARACIONES ENTRE PERSPECTIVAS:\n{_dump(state['perspectives'])}")
    parts.append(f"CORRELACIONES GENERALES:\n{_dump(state['correlations'])}")
    if custom:
        parts.append(
            "=== ENCUESTAS PERSONALIZADAS ===\n\n"
            f"CAMPOS PERSONALIZADOS DETECTADOS:\n{_dump(state['customFields'])}\n\n"
            f"ANÁLISIS DE CAMPOS PERSONALIZADOS:\n{_dump(state['customAnalysis'])}\n\n"
            "NOTA: Este colegio ha implementado encuestas personalizadas además de las encuestas estándar. "
            "Incluye estos datos en tu análisis cuando sea relevante."
        )
    parts.append(_INSTRUCTIONS)
    parts.append(
        "Responde como un consultor senior que está revisando los datos en tiempo real y proporcionando "
        f"asesoría estratégica específica para {school_name}, considerando tanto la perspectiva estudiantil "
        "como docente" + (", incluyendo los datos de encuestas personalizadas" if custom else "") + "."
    )
    return "\n\n".join(parts)


def build_messages(
    system_prompt: str,
    history: Iterable,
    user_message: str,
    max_turns: int = 10,
) -> list[dict]:
    """system, then the last `max_turns` history turns, then the new user message.

    History items may be ChatTurn models or {"role", "content"} dicts; role "ai"
    is sent as "assistant".
    """
    turns = []
    for item in history or []:
        if isinstance(item, ChatTurn):
            role, content = item.role, item.content
        else:
            role, content = item.get("role"), item.get("content", "")
        turns.append({"role": _ROLE_MAP.get(role, "user"), "content": content})
    if max_turns > 0:
        turns = turns[-max_turns:]
    else:
        turns = []
    return [{"role": "system", "content": system_prompt}, *turns, {"role": "user", "content": user_message}]


def recommendation_prompt(question: Question, result: FrequencyResult) -> str:
    top_value, top_count = result.top_response
    return (
        f'Basándote en los siguientes datos de la pregunta "{question.text}" del campo {question.field}:\n\n'
        f"Datos: {_compact(result.counts)}\n"
        f"Total de respuestas: {result.total}\n"
        f"Porcentajes: {_compact(result.percentages)}\n"
        f"Respuesta más común: {top_value} ({top_count} respuestas)\n\n"
        "Genera una recomendación específica y práctica para mejorar este aspecto en el colegio. "
        "La recomendación debe ser:\n"
        "- Específica y accionable\n"
        "- Dirigida a directivos escolares\n"
        "- Máximo 2-3 oraciones\n"
        "- Enfocada en soluciones concretas\n"
        "- NO mencionar dinero, presupuestos o costos\n\n"
        "Responde solo con la recomendación, sin explicaciones adicionales."
    )


def analysis_prompt(question: Question, result: FrequencyResult) -> str:
    return (
        f'Analiza los siguientes resultados de la pregunta "{question.text}":\n\n'
        f"Datos: {_compact(result.counts)}\n"
        f"Total de respuestas: {result.total}\n"
        f"Porcentajes: {_compact(result.percentages)}\n\n"
        "Proporciona un análisis breve (máximo 2 oraciones) que explique qué significan estos resultados "
        "para el ambiente escolar. Sé específico con los números y porcentajes.\n\n"
        "Responde solo con el análisis, sin recomendaciones."
    )
