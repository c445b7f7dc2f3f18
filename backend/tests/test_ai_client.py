from types import SimpleNamespace

import httpx
import openai
import pytest

from ai_client import AIClient, clean_response, map_openai_error
from errors import (
    AIAccessDeniedError, AIAuthError, AIMalformedResponseError, AINetworkError, AIQuotaError, AIRateLimitError,
    AIServerError, AIServiceError, AITimeoutError, AIUsageLimitError,
)
from recommendations import RecommendationBuilder
from schemas import SurveyResponse
from survey_schema import STUDENT, find_question

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")

def _status(cls, status, body=None):
    return cls("boom", response=httpx.Response(status, request=REQUEST), body=body)

def test_clean_response_strips_markdown_and_emoji():
    assert clean_response("## Resumen\n**Clave**: el *clima* mejora 😀") == "Resumen\nClave: el clima mejora"

def test_clean_response_bullets_and_blank_lines():
    assert clean_response("- punto uno\n• punto dos") == "punto uno\npunto dos"
    assert clean_response("uno\n\n\n\ndos") == "uno\n\ndos"

@pytest.mark.parametrize("exc,expected", [
    (openai.APITimeoutError(request=REQUEST), AITimeoutError),
    (openai.APIConnectionError(request=REQUEST), AINetworkError),
    (_status(openai.AuthenticationError, 401), AIAuthError),
    (_status(openai.PermissionDeniedError, 403), AIAccessDeniedError),
    (_status(openai.RateLimitError, 429, {"code": "insufficient_quota"}), AIQuotaError),
    (_status(openai.RateLimitError, 429, {"code": "rate_limit_exceeded"}), AIRateLimitError),
    (_status(openai.RateLimitError, 429), AIUsageLimitError),
    (_status(openai.InternalServerError, 503), AIServerError),
    (openai.APIResponseValidationError(response=httpx.Response(200, request=REQUEST), body=None), AIMalformedResponseError),
    (openai.APIError("boom", request=REQUEST, body=None), AIServiceError),
])
def test_map_openai_error(exc, expected):
    assert type(map_openai_error(exc)) is expected

def test_unmapped_status_keeps_code():
    err = map_openai_error(_status(openai.BadRequestError, 400))
    assert type(err) is AIServiceError
    assert err.message == "Error de OpenAI: 400"

def _stub(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))

def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])

def test_generate_without_key():
    with pytest.raises(AIAuthError):
        AIClient(api_key="").generate([{"role": "user", "content": "hola"}])

def test_generate_cleans_reply():
    seen = {}
    def create(**kwargs):
        seen.update(kwargs)
        return _completion("**Hola** mundo")
    client = AIClient(api_key="")
    client._client = _stub(create)
    assert client.generate([{"role": "user", "content": "hola"}]) == "Hola mundo"
    assert seen["model"] == client.model and seen["max_tokens"] == client.max_tokens

def test_generate_empty_reply():
    client = AIClient(api_key="")
    client._client = _stub(lambda **kw: _completion("   "))
    with pytest.raises(AIMalformedResponseError):
        client.generate([])

def test_generate_maps_sdk_errors():
    def create(**kwargs):
        raise _status(openai.RateLimitError, 429, {"code": "insufficient_quota"})
    client = AIClient(api_key="")
    client._client = _stub(create)
    with pytest.raises(AIQuotaError):
        client.generate([])

def _invalid_reply(**kwargs):
    raise openai.APIResponseValidationError(response=httpx.Response(200, request=REQUEST), body=None)

def test_generate_maps_response_validation_error():
    client = AIClient(api_key="")
    client._client = _stub(_invalid_reply)
    with pytest.raises(AIMalformedResponseError):
        client.generate([])

def test_recommendation_degrades_on_invalid_reply():
    client = AIClient(api_key="")
    client._client = _stub(_invalid_reply)
    responses = [SurveyResponse(school_code="CSA123", survey_code="EAE123", course="1° Medio", letter="A",
                                timestamp=1, answers={"bullyingProblem": "Sí"})]
    rec = RecommendationBuilder(client).build_recommendation(
        find_question(STUDENT, "bullyingProblem"), responses, STUDENT)
    assert rec.degraded is True
    assert rec.error == AIMalformedResponseError.default_message
