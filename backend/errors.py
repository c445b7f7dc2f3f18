# Error taxonomy shared by the service layers and mapped to HTTP in main.py
from __future__ import annotations
from typing import Optional


class SurveyServiceError(Exception):
    """Base class for errors surfaced to the caller with a user-facing message."""

    status_code = 400
    default_message = "Ocurrió un error inesperado."

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ------------------------
# Validation
# ------------------------
class InvalidSchoolCodeError(SurveyServiceError):
    status_code = 404
    default_message = "Código de colegio inválido"


class InvalidSurveyCodeError(SurveyServiceError):
    status_code = 404
    default_message = "Código de encuesta inválido para este colegio"


class IncompleteSurveyError(SurveyServiceError):
    status_code = 422
    default_message = "La encuesta tiene secciones incompletas"

    def __init__(self, sections: list[str], message: Optional[str] = None):
        self.sections = list(sections)
        super().__init__(message or f"{self.default_message}: {', '.join(self.sections)}")


class UnknownSectionError(SurveyServiceError):
    status_code = 404
    default_message = "Sección desconocida"

    def __init__(self, section_id: str):
        self.section_id = section_id
        super().__init__(f"{self.default_message}: {section_id}")


class NavigationBlockedError(SurveyServiceError):
    status_code = 409
    default_message = "Completa las secciones anteriores antes de continuar"


class DuplicateEmailError(SurveyServiceError):
    status_code = 409
    default_message = "Ya existe una cuenta con este correo electrónico"


class WeakPasswordError(SurveyServiceError):
    status_code = 422
    default_message = "La contraseña debe tener al menos 6 caracteres"


class FormValidationError(SurveyServiceError):
    status_code = 422
    default_message = "Revisa los campos del formulario"

    def __init__(self, fields: dict, message: Optional[str] = None):
        self.fields = dict(fields)
        super().__init__(message or next(iter(self.fields.values()), None))


class SchemaDefinitionError(SurveyServiceError):
    status_code = 422
    default_message = "La definición de la encuesta no es válida"


# ------------------------
# Invariants / authorization
# ------------------------
class InvalidCredentialsError(SurveyServiceError):
    status_code = 401
    default_message = "Credenciales incorrectas. Intenta nuevamente."


class PermissionDeniedError(SurveyServiceError):
    status_code = 403
    default_message = "No tienes permisos para realizar esta acción"


class SecondaryUserLimitError(SurveyServiceError):
    status_code = 409
    default_message = "Has alcanzado el límite máximo de 5 usuarios secundarios"


class NotFoundError(SurveyServiceError):
    status_code = 404
    default_message = "Recurso no encontrado"


# ------------------------
# Connectivity
# ------------------------
class StoreUnavailableError(SurveyServiceError):
    status_code = 503
    default_message = "No se pudo guardar/cargar los datos. Intenta nuevamente."


# ------------------------
# External AI
# ------------------------
class AIServiceError(SurveyServiceError):
    status_code = 502
    default_message = "Error al conectar con el servicio de IA. Verifica tu conexión a internet y configuración de red."


class AIAuthError(AIServiceError):
    default_message = "API key inválida. Verifica tu clave de OpenAI en las variables de entorno."


class AIQuotaError(AIServiceError):
    default_message = (
        "Límite de créditos de OpenAI agotado. Revisa tu plan en platform.openai.com y agrega créditos "
        "o actualiza tu suscripción. Se generarán recomendaciones básicas mientras tanto."
    )


class AIRateLimitError(AIServiceError):
    default_message = (
        "Límite de velocidad de OpenAI excedido. Intenta nuevamente en unos minutos. "
        "Se generarán recomendaciones básicas mientras tanto."
    )


class AIUsageLimitError(AIServiceError):
    default_message = (
        "Límite de uso de OpenAI excedido. Verifica tu plan en platform.openai.com o intenta más tarde. "
        "Se generarán recomendaciones básicas mientras tanto."
    )


class AIAccessDeniedError(AIServiceError):
    default_message = "Acceso denegado. Verifica los permisos de tu API key de OpenAI."


class AIServerError(AIServiceError):
    default_message = "Error del servidor de OpenAI. Intenta nuevamente en unos minutos."


class AITimeoutError(AIServiceError):
    default_message = "Tiempo de espera agotado. Verifica tu conexión a internet e intenta nuevamente."


class AINetworkError(AIServiceError):
    default_message = (
        "Error de conexión a OpenAI. Verifica tu conexión a internet, firewall, o proxy. "
        "Si usas VPN, intenta desactivarlo temporalmente."
    )


class AIMalformedResponseError(AIServiceError):
    default_message = "Respuesta vacía de OpenAI. Intenta nuevamente."
