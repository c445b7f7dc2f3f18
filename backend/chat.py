# Conversational analyst over a school's response set
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
import logging

import config
from ai_client import AIClient
from errors import AIServiceError
from prompts import build_messages, build_system_prompt
from schemas import SurveyResponse

logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "Hola, soy tu analista de datos educativos.\n\n"
    "Estoy aquí para ayudarte a entender qué está pasando en tu colegio basándome en los datos reales de las "
    "encuestas. Puedo analizar cualquier aspecto del ambiente escolar, desde la experiencia general de los "
    "estudiantes hasta temas específicos como seguridad, salud mental, o limpieza. También puedo comparar entre "
    "cursos, identificar patrones y sugerir acciones concretas.\n\n"
    "¿Hay algo específico que te gustaría que analice primero?"
)

DATA_UPDATED_TEXT = (
    "Datos actualizados: Se han detectado nuevas respuestas de encuestas. "
    "El análisis ahora incluye la información más reciente."
)

ERROR_TEXT = (
    "Lo siento, hubo un problema al procesar tu consulta. Esto puede deberse a un problema temporal con el "
    "servicio de IA, configuración de API key incorrecta, o límite de uso alcanzado.\n\n"
    "Por favor, intenta nuevamente en unos momentos. Si el problema persiste, contacta al soporte técnico. "
    "Mientras tanto, puedes revisar los datos directamente en la sección de Indicadores."
)


@dataclass
class ChatReply:
    text: str
    degraded: bool = False
    error: Optional[str] = None
    data_updated: bool = False
    latest_timestamp: Optional[int] = None


def latest_timestamp(responses: Sequence[SurveyResponse]) -> Optional[int]:
    return max((r.timestamp for r in responses), default=None)


class ChatAgent:
    """Multi-turn analyst. Statistics are never remembered between turns: the
    system prompt is rebuilt from the full current response set on every reply."""

    def __init__(self, ai_client: AIClient, school_name: Optional[str] = None, max_turns: int = config.CHAT_HISTORY_TURNS):
        self.ai_client = ai_client
        self.school_name = school_name or "tu colegio"
        self.max_turns = max_turns

    def welcome(self) -> str:
        return WELCOME_TEXT

    def reply(
        self,
        message: str,
        responses: Sequence[SurveyResponse],
        history: Iterable = (),
        last_seen_timestamp: Optional[int] = None,
    ) -> ChatReply:
        latest = latest_timestamp(responses)
        updated = bool(latest and last_seen_timestamp is not None and latest > last_seen_timestamp)

        system = build_system_prompt(responses, self.school_name)
        messages = build_messages(system, history, message, self.max_turns)
        try:
            text = self.ai_client.generate(messages)
        except AIServiceError as exc:
            logger.warning("Chat reply failed for %s: %s", self.school_name, exc.message)
            return ChatReply(
                text=f"{ERROR_TEXT}\n\n{exc.message}",
                degraded=True,
                error=exc.message,
                data_updated=updated,
                latest_timestamp=latest,
            )
        if updated:
            text = f"{DATA_UPDATED_TEXT}\n\n{text}"
        return ChatReply(text=text, data_updated=updated, latest_timestamp=latest)
