# Static questionnaire catalogue for the student and teacher school-climate surveys
from __future__ import annotations
from dataclasses import dataclass, field as dc_field
from typing import Iterable, Mapping, Optional
import re

from errors import SchemaDefinitionError

STUDENT = "student"
TEACHER = "teacher"
ROLES = (STUDENT, TEACHER)

PREDEFINED_SURVEYS = ("EAE123", "EAE1234", "PRU123")
CUSTOM_FIELD_PREFIX = "custom_"

# Record keys that are metadata rather than answers
METADATA_FIELDS = ("id", "schoolCode", "surveyCode", "course", "letter", "surveyType", "timestamp")


@dataclass(frozen=True)
class Question:
    number: str
    text: str
    field: str
    options: tuple[str, ...]
    section: str = ""
    required: bool = True
    conditional_field: Optional[str] = None
    conditional_value: Optional[str] = None

    @property
    def is_conditional(self) -> bool:
        return bool(self.conditional_field)


@dataclass(frozen=True)
class Section:
    id: str
    name: str
    questions: tuple[Question, ...] = dc_field(default_factory=tuple)


def is_visible(question: Question, answers: Mapping[str, str]) -> bool:
    """True when the question has no guard or its guard field holds the triggering value."""
    if not question.is_conditional:
        return True
    return answers.get(question.conditional_field) == question.conditional_value


# ------------------------
# Option scales
# ------------------------
AGREE5 = ("Muy de Acuerdo", "De Acuerdo", "Ni de Acuerdo ni en Desacuerdo", "En Desacuerdo", "Muy en Desacuerdo")
EXPERIENCE5 = ("Muy positiva", "Positiva", "Neutral", "Negativa", "Muy negativa")
GENDER = ("Femenino", "Masculino", "Transgénero", "Otro")
YES_NO = ("Sí", "No")
YES_NO_DONT_KNOW = ("Sí", "No", "No lo sé")
YES_NO_UNSURE = ("Sí", "No", "No estoy seguro")
YES_NO_UNSURE_AO = ("Sí", "No", "No estoy seguro/a")
DISABILITY_TYPES = ("Física", "Intelectual", "Sensorial (visual o auditiva)", "Psíquica", "Múltiple")

SECTION_NAMES = (
    ("general", "I. Preguntas Generales"),
    ("experience", "II. Experiencia en el Establecimiento"),
    ("security", "III. Seguridad y Bullying"),
    ("mental-health", "IV. Salud Mental"),
    ("alcohol-drugs", "V. Consumo de Alcohol y Drogas"),
    ("cleanliness", "VI. Limpieza del Establecimiento"),
)
SECTION_IDS = tuple(sid for sid, _ in SECTION_NAMES)

_DURING = "Durante este semestre... "


def _q(number, text, field, options, cond=None):
    cf, cv = cond if cond else (None, None)
    return number, text, field, tuple(options), cf, cv


_STUDENT_ROWS = {
    "general": [
        _q("1", "¿Con cuál género te identificas?", "gender", GENDER),
        _q("2", "¿Presentas alguna discapacidad?", "disability", YES_NO_DONT_KNOW),
        _q("2a", "Si tu respuesta anterior fue 'Sí', ¿qué tipo de discapacidad presentas?", "disabilityType",
           DISABILITY_TYPES + ("Otra",), ("disability", "Sí")),
        _q("3", "En el último mes... ¿cuántos días completos has faltado al colegio por cualquier razón?",
           "absenceDays", ("0 días", "1 día", "2 días", "3 o más días")),
    ],
    "experience": [
        _q("4", "¿Estás feliz de estar en este colegio?", "happyAtSchool", AGREE5),
        _q("5", "¿Sientes que eres parte de este colegio?", "feelPartOfSchool", AGREE5),
        _q("6", "¿Cómo describirías tu experiencia general en el colegio?", "generalExperience", EXPERIENCE5),
        _q("7", "¿El colegio te ha dado anteriormente la oportunidad de participar y de dar ideas para mejorar "
                "la calidad del ambiente educacional?", "participationOpportunity", AGREE5),
        _q("8", "Las actividades extracurriculares ofrecidas por el colegio son variadas y atractivas",
           "extracurricularActivities", AGREE5),
        _q("9", "¿Te sientes motivado/a y comprometido/a con tu proceso de aprendizaje en el colegio?",
           "learningMotivation", AGREE5),
        _q("10", "¿Sientes que tus profesores se preocupan por tu bienestar y desarrollo académico?",
           "teacherCare", AGREE5),
        _q("11", "¿Tienes espacio suficiente para jugar, correr y hacer vida social en el colegio?",
           "socialSpace", AGREE5),
    ],
    "security": [
        _q("12", "¿Te sientes seguro en el colegio?", "schoolSafety", AGREE5),
        _q("13", "¿Tu colegio enseña a los estudiantes a tratarse con respeto?", "respectTeaching", AGREE5),
        _q("14", "¿Tu colegio ayuda a los estudiantes a resolver sus conflictos?", "conflictResolution", AGREE5),
        _q("15", "¿Consideras que el Bullying es un problema en tu colegio?", "bullyingProblem", YES_NO_DONT_KNOW),
        _q("16", _DURING + "¿Se han difundido rumores malos o mentiras sobre ti?", "rumorsSpread", YES_NO),
        _q("17", _DURING + "¿Te han llamado por nombres molestos o te hacen bromas ofensivas?",
           "offensiveNames", YES_NO),
        _q("18", _DURING + "¿Te han golpeado o te empujado en la escuela sin estar jugando?",
           "physicalAggression", YES_NO),
        _q("19", _DURING + "¿Se han burlado de ti por tu apariencia?", "appearanceMocking", YES_NO),
        _q("20", _DURING + "¿Viste a otro niño con un cuchillo, una navaja o un arma blanca?", "weaponSeen", YES_NO),
    ],
    "mental-health": [
        _q("21", _DURING + "¿Qué tan seguido te has sentido estresado?", "stressFrequency",
           ("Constantemente", "De vez en cuando", "No me he sentido estresado")),
        _q("22", _DURING + "¿Qué tan seguido te has sentido triste?", "sadnessFrequency",
           ("Constantemente", "De vez en cuando", "No me he sentido triste")),
        _q("23", _DURING + "¿Qué tan seguido te has sentido solo?", "lonelinessFrequency",
           ("Constantemente", "De vez en cuando", "No me he sentido solo")),
        _q("24", _DURING + "¿Consideraste hablar con algún profesional sobre tus problemas?",
           "consideredProfessionalHelp", ("Sí", "No", "No lo necesité")),
        _q("24a", "Si tu respuesta anterior fue 'Sí', ¿recibiste ayuda de algún profesional?",
           "receivedProfessionalHelp", YES_NO_UNSURE, ("consideredProfessionalHelp", "Sí")),
        _q("24b", "Si tu respuesta anterior fue 'Sí', ¿recibiste esa ayuda de algún profesional del colegio?",
           "receivedSchoolProfessionalHelp", YES_NO_UNSURE, ("receivedProfessionalHelp", "Sí")),
        _q("25", "¿Crees que hablarlo con un profesional te ayudaría a mejorar?", "professionalHelpWouldHelp",
           YES_NO_UNSURE),
        _q("26", "¿Crees que tus compañeros entenderían tu situación?", "peersUnderstanding", YES_NO_UNSURE),
        _q("27", "¿Sabrías dónde y a quién pedirle ayuda dentro del establecimiento?", "knowWhereToAskHelp",
           YES_NO_UNSURE),
        _q("28", "¿Crees que el colegio cuenta con las herramientas necesarias para ayudar a sus estudiantes en "
                 "momentos de estrés, tristeza o soledad?", "schoolHasNecessaryTools", YES_NO_UNSURE),
    ],
    "alcohol-drugs": [
        _q("29", "¿Crees que fumar cigarros es malo para la salud de una persona?", "cigarettesHealthBad",
           YES_NO_UNSURE),
        _q("30", "¿Crees que fumar cigarros electrónicos es malo para la salud de una persona?",
           "electronicCigarettesHealthBad", YES_NO_UNSURE),
        _q("31", "¿Crees que fumar marihuana es malo para la salud de una persona?", "marijuanaHealthBad",
           YES_NO_UNSURE),
        _q("32", "¿Crees que tomar alcohol (cerveza, vino, licor) en exceso, es malo para la salud de una persona?",
           "excessiveAlcoholHealthBad", YES_NO_UNSURE),
        _q("33", "¿Crees que el consumo de alcohol es un problema entre los estudiantes del colegio?",
           "alcoholProblemAtSchool", YES_NO_UNSURE),
        _q("34", "¿Crees que el consumo de drogas es un problema entre los estudiantes del colegio?",
           "drugsProblemAtSchool", YES_NO_UNSURE),
        _q("35", "¿Te sientes presionado/a por tus compañeros para consumir alcohol o drogas?",
           "peerPressureSubstances", YES_NO_UNSURE),
    ],
    "cleanliness": [
        _q("36", "En general, trato de cooperar con la limpieza del colegio botando mi basura donde corresponde",
           "cooperateWithCleanliness", AGREE5),
        _q("37", "En general, trato de mantener el baño lo más limpio posible", "maintainBathroomClean", AGREE5),
        _q("38", "En general, considero que mis compañeros se preocupan de la limpieza del colegio",
           "peersCareCleanliness", AGREE5),
        _q("39", "La limpieza de las salas de clases se realizan con la frecuencia necesaria",
           "classroomCleaningFrequency", AGREE5),
        _q("40", "La limpieza de los baños se realizan con la frecuencia necesaria", "bathroomCleaningFrequency",
           AGREE5),
        _q("41", "Los baños siempre cuentan con los artículos de higiene necesarios", "bathroomHygieneArticles",
           AGREE5),
        _q("42", "¿Crees que se podría mejorar la limpieza de las instalaciones del colegio?",
           "improveFacilitiesCleanliness", YES_NO_UNSURE),
    ],
}

_TEACHER_ROWS = {
    "general": [
        _q("1", "¿Con cuál género te identificas?", "gender", GENDER),
        _q("2", "¿Presentas algún tipo de discapacidad?", "disability", YES_NO_DONT_KNOW),
        _q("2a", "Si tu respuesta anterior fue 'Sí', ¿qué tipo de discapacidad presentas?", "disabilityType",
           DISABILITY_TYPES, ("disability", "Sí")),
        _q("3", "¿Cuál es tu edad?", "teacherAge",
           ("Menor a 30 años", "Entre 30 y 39 años", "Entre 40 y 49 años", "Mayor a 49 años")),
        _q("4", "¿En qué nivel enseñas?", "teachingLevel", ("Básica", "Media", "Ambas")),
    ],
    "experience": [
        _q("5", "El establecimiento escolar proporciona suficientes recursos y materiales didácticos para apoyar "
                "la enseñanza del profesor.", "schoolResources", AGREE5),
        _q("6", "El personal administrativo constantemente brinda apoyo y colaboración al profesor en su labor "
                "docente.", "administrativeSupport", AGREE5),
        _q("7", "El establecimiento escolar ofrece oportunidades de desarrollo profesional para que el profesor "
                "mejore sus habilidades pedagógicas.", "professionalDevelopment", AGREE5),
        _q("8", "El establecimiento escolar promueve un ambiente inclusivo y diverso que respeta las diferencias "
                "culturales de los docentes y estudiantes.", "inclusiveEnvironment", AGREE5),
        _q("9", "¿Te sientes motivado y entusiasmado en tu labor docente dentro del establecimiento escolar?",
           "teachingMotivation", AGREE5),
        _q("10", "¿Te sientes valorado y reconocido por tu trabajo en el establecimiento escolar?",
           "teacherRecognition", AGREE5),
        _q("11", "En general, ¿te sientes feliz con tu experiencia laboral en este colegio?", "teacherHappiness",
           AGREE5),
    ],
    "security": [
        _q("12", _DURING + "¿Has sido objeto de comportamientos dañinos por parte de estudiantes en el colegio que "
                           "te hayan hecho sentir incómodo, amenazado o humillado?", "teacherHarassed",
           YES_NO_UNSURE_AO),
        _q("13", _DURING + "¿Has presenciado alguna situación de acoso, maltrato o humillación en el colegio hacia "
                           "algún docente?", "witnessedTeacherHarassment", YES_NO_UNSURE_AO),
        _q("14", _DURING + "¿Has presenciado alguna situación de acoso, maltrato o humillación en el colegio hacia "
                           "algún estudiante?", "witnessedStudentHarassment", YES_NO_UNSURE_AO),
        _q("15", _DURING + "¿Viste a algún estudiante con algún arma de fuego o un arma blanca (cuchillo, navaja o "
                           "cualquier instrumento que posea empuñadura y hoja metálica con bordes cortantes)?",
           "witnessedWeapons", YES_NO_UNSURE_AO),
        _q("16", "¿Consideras que el Bullying es un problema en tu colegio?", "bullyingProblemTeacher",
           YES_NO_UNSURE_AO),
        _q("17", "¿Consideras que el colegio debiese implementar más medidas para prevenir el acoso y violencia "
                 "escolar en tu colegio?", "needMoreSafetyMeasures", YES_NO_UNSURE_AO),
    ],
    "mental-health": [
        # numbering repeats "17" in the published questionnaire
        _q("17", _DURING + "¿qué tan seguido te has sentido estresado, solo o triste?", "teacherStressFrequency",
           ("Constantemente", "De vez en cuando", "Nunca")),
        _q("18", "¿Te sientes apoyado/a por el colegio en cuanto a tu bienestar emocional y salud mental?",
           "schoolEmotionalSupport", AGREE5),
        _q("19", "¿El colegio ofrece recursos y programas de apoyo para promover el bienestar emocional y el "
                 "auto-cuidado de los profesores?", "schoolWellnessPrograms", AGREE5),
        _q("20", "¿Te sientes satisfecho/a con las políticas y programas implementados por el colegio en relación "
                 "con la salud mental de los profesores?", "mentalHealthPolicies", AGREE5),
        _q("21", "¿Piensas que el colegio está comprometido en abordar la estigmatización y los prejuicios "
                 "asociados con problemas de salud mental?", "mentalHealthStigma", AGREE5),
    ],
    "alcohol-drugs": [
        _q("22", "¿Crees que el consumo de alcohol es un problema entre los estudiantes del colegio?",
           "alcoholProblemAtSchoolTeacher", YES_NO_UNSURE),
        _q("23", "¿Crees que el consumo de drogas es un problema entre los estudiantes del colegio?",
           "drugsProblemAtSchoolTeacher", YES_NO_UNSURE),
    ],
    "cleanliness": [
        _q("24", "En general, intento cooperar con la limpieza del colegio botando mi basura donde corresponde y "
                 "manteniendo los espacios comunes lo más limpio posible.", "teacherCooperateWithCleanliness",
           AGREE5),
        _q("25", "Se proporciona un entorno limpio y ordenado en el colegio, incluyendo áreas como baños y zonas "
                 "de recreo.", "cleanEnvironmentProvided", AGREE5),
        _q("26", "¿Crees que se podría mejorar la limpieza de las instalaciones del establecimiento?",
           "improveFacilitiesCleanlinessTeacher", AGREE5),
        _q("27", "Los baños siempre cuentan con los artículos de higiene necesarios.",
           "bathroomHygieneArticlesTeacher", AGREE5),
    ],
}


def _build(rows: dict) -> tuple[Section, ...]:
    sections = []
    for sid, name in SECTION_NAMES:
        qs = tuple(
            Question(number=n, text=t, field=f, options=o, section=sid, conditional_field=cf, conditional_value=cv)
            for n, t, f, o, cf, cv in rows[sid]
        )
        sections.append(Section(id=sid, name=name, questions=qs))
    return tuple(sections)


STUDENT_SCHEMA = _build(_STUDENT_ROWS)
TEACHER_SCHEMA = _build(_TEACHER_ROWS)
_SCHEMAS = {STUDENT: STUDENT_SCHEMA, TEACHER: TEACHER_SCHEMA}


# ------------------------
# Lookups
# ------------------------
def schema_for(role: str) -> tuple[Section, ...]:
    try:
        return _SCHEMAS[role]
    except KeyError:
        raise ValueError(f"Unknown survey role: {role!r}")


def section_ids(role: str) -> tuple[str, ...]:
    return tuple(s.id for s in schema_for(role))


def questions_for(role: str) -> list[Question]:
    return [q for s in schema_for(role) for q in s.questions]


def find_question(role: str, field: str) -> Optional[Question]:
    for q in questions_for(role):
        if q.field == field:
            return q
    return None


def section_fields(role: str, section_id: str) -> list[str]:
    for s in schema_for(role):
        if s.id == section_id:
            return [q.field for q in s.questions]
    return []


def standard_fields() -> frozenset[str]:
    """Every static field name of both roles plus the record metadata keys."""
    names = set(METADATA_FIELDS)
    for role in ROLES:
        names.update(q.field for q in questions_for(role))
    return frozenset(names)


_LEADING_INT = re.compile(r"^(\d+)")


def question_sort_key(number: str) -> float:
    """Numeric order of a question number: "24" -> 24, "24a" -> 24.1, "24b" -> 24.2."""
    match = _LEADING_INT.match(number or "")
    base = int(match.group(1)) if match else 0
    if "a" in number:
        return base + 0.1
    if "b" in number:
        return base + 0.2
    return base


def validate_schema(sections: Iterable[Section]) -> None:
    """Check field-name uniqueness and that each guard refers to an earlier field.

    Raises:
        SchemaDefinitionError: On the first violation found.
    """
    seen: set[str] = set()
    for section in sections:
        for q in section.questions:
            if not q.field:
                raise SchemaDefinitionError(f"La pregunta {q.number} no tiene nombre de campo")
            if q.field in seen:
                raise SchemaDefinitionError(f"Campo duplicado en la encuesta: {q.field}")
            if q.is_conditional and q.conditional_field not in seen:
                raise SchemaDefinitionError(
                    f"La pregunta {q.number} depende de '{q.conditional_field}', que debe aparecer antes"
                )
            seen.add(q.field)


def schema_as_dict(sections: Iterable[Section]) -> list[dict]:
    return [
        {
            "id": s.id,
            "name": s.name,
            "questions": [
                {
                    "number": q.number,
                    "text": q.text,
                    "field": q.field,
                    "options": list(q.options),
                    "required": q.required,
                    "conditional_field": q.conditional_field,
                    "conditional_value": q.conditional_value,
                }
                for q in s.questions
            ],
        }
        for s in sections
    ]


def sections_from_dicts(data: Iterable[Mapping]) -> tuple[Section, ...]:
    """Build Section/Question objects from stored custom-survey section documents."""
    out = []
    for raw in data or []:
        sid = raw.get("id") or ""
        qs = tuple(
            Question(
                number=str(q.get("number", "")),
                text=q.get("text", ""),
                field=q.get("field", ""),
                options=tuple(q.get("options") or ()),
                section=sid,
                required=bool(q.get("required", True)),
                conditional_field=q.get("conditional_field") or None,
                conditional_value=q.get("conditional_value") or None,
            )
            for q in raw.get("questions") or []
        )
        out.append(Section(id=sid, name=raw.get("name", sid), questions=qs))
    return tuple(out)
