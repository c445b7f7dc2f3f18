import json
import logging
from typing import Optional

from fastapi import FastAPI, Depends, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

import config
from db import Base, engine
from ai_client import AIClient, get_ai_client
from aggregation import (
    aggregate_state, classify_priority, cross_tabulate, filter_responses, frequency, role_indicators,
)
from chat import ChatAgent, latest_timestamp
from custom_surveys import CustomSurveyService, generate_survey_code, get_custom_survey_service
from custom_surveys import to_out as survey_out
from errors import (
    FormValidationError, IncompleteSurveyError, InvalidSchoolCodeError, InvalidSurveyCodeError, SurveyServiceError,
)
from exporters import export_filename, recommendations_to_pdf, responses_frame, responses_to_csv, responses_to_xlsx
from recommendations import RecommendationBuilder
from schemas import (
    AnswersIn, ChatReplyOut, ChatRequest, CodeCheck, CustomSurveyCreate, CustomSurveyUpdate, LoginIn,
    NavigateIn, PasswordChangeIn, RecommendationPdfRequest, RegisterIn, ResponseFilter, SecondaryUserCreate,
    SecondaryUserUpdate, SessionCreate,
)
from security import current_user, issue_token, require_admin, require_permission, verify_admin
from store import Repository, get_repository
from survey_schema import STUDENT, TEACHER, schema_as_dict, schema_for, sections_from_dicts
from survey_state import SessionRegistry, SurveyStateMachine
from users import UserService, get_user_service
from users import to_out as user_out
from validation import CodeValidator, get_validator, normalize_code

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="School Climate Survey API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

# In-progress questionnaires, keyed by session id
sessions = SessionRegistry()


@app.exception_handler(SurveyServiceError)
def handle_service_error(request: Request, exc: SurveyServiceError):
    body = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, IncompleteSurveyError):
        body["sections"] = exc.sections
    if isinstance(exc, FormValidationError):
        body["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health")
def health():
    """Basic readiness check.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}


# ------------------------
# Helpers
# ------------------------
def _school_name(user: dict, validator: CodeValidator) -> str:
    return user.get("schoolName") or validator.school_display_info(user.get("schoolCode", ""))["name"]


def _school_responses(
    repo: Repository,
    user: dict,
    role: Optional[str] = None,
    survey_code: Optional[str] = None,
    course: Optional[str] = None,
    letter: Optional[str] = None,
):
    responses = repo.list_by_school(user["schoolCode"])
    return filter_responses(responses, normalize_code(survey_code) or None, role, course, letter)


def _survey_layout(validator: CodeValidator, survey_code: Optional[str], school_code: str, role: str):
    """(role, custom sections or None, display name) for an optional survey filter."""
    if not survey_code:
        return role, None, ""
    hit = validator.predefined(survey_code, school_code)
    if hit:
        return hit.type, None, hit.name
    if validator.is_custom_survey(survey_code, school_code):
        custom = CustomSurveyService(validator.repository, validator).get_active(survey_code, school_code)
        if custom:
            sections = sections_from_dicts(custom.get("sections") or [])
            return custom.get("surveyType") or STUDENT, sections, custom.get("name", "")
    return role, None, ""


def _session_view(session_id: str, machine: SurveyStateMachine) -> dict:
    return {"session_id": session_id, **machine.status()}


# ------------------------
# Public: codes and schema
# ------------------------
@app.get("/public/schools/{code}")
def check_school(code: str, validator: CodeValidator = Depends(get_validator)):
    """Validate a school code.

    Args:
        code (str): School code as typed by the respondent.

    Returns:
        dict: {valid, name?, surveys[]} where surveys lists the school's predefined surveys.
    """
    check = validator.validate_school_code(code)
    out = check.model_dump(exclude_none=True)
    out["surveys"] = validator.surveys_for_school(code) if check.valid else []
    return out


@app.get("/public/schools/{school}/surveys/{survey}", response_model=CodeCheck)
def check_survey(school: str, survey: str, validator: CodeValidator = Depends(get_validator)):
    """Validate a survey code for a school (whitelist, then active custom surveys).

    Returns:
        CodeCheck: {valid, name?, description?, type?}
    """
    return validator.validate_survey_code(survey, school)


@app.get("/public/schema/{role}")
def get_schema(role: str):
    """Static questionnaire for `student` or `teacher`."""
    try:
        return schema_as_dict(schema_for(role))
    except ValueError:
        raise HTTPException(status_code=404, detail="Unknown survey role")


# ------------------------
# Public: survey sessions
# ------------------------
@app.post("/public/sessions")
def create_session(payload: SessionCreate, validator: CodeValidator = Depends(get_validator)):
    """Start answering a survey.

    Args:
        payload (SessionCreate): school_code, survey_code and, for student surveys, course and letter.

    Returns:
        dict: session status including the section layout (`schema`).

    Raises:
        InvalidSchoolCodeError: Unknown school.
        InvalidSurveyCodeError: Survey not whitelisted and no active custom survey.
    """
    school, survey = normalize_code(payload.school_code), normalize_code(payload.survey_code)
    if not validator.is_authorized_school(school):
        raise InvalidSchoolCodeError()
    if not validator.validate_survey_code(survey, school).valid:
        raise InvalidSurveyCodeError()

    kind, role, sections = validator.resolve_survey(survey, school)
    if kind == "unknown":
        raise InvalidSurveyCodeError()
    try:
        machine = SurveyStateMachine(
            role=role or STUDENT,
            school_code=school,
            survey_code=survey,
            course=payload.course,
            letter=payload.letter,
            sections=sections if kind == "custom" else None,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    session_id = sessions.create(machine)
    logger.info("Survey session started for %s/%s (%s)", school, survey, machine.role)
    out = _session_view(session_id, machine)
    out["schema"] = schema_as_dict(machine.sections)
    return out


@app.get("/public/sessions/{session_id}")
def get_session(session_id: str):
    return _session_view(session_id, sessions.get(session_id))


@app.put("/public/sessions/{session_id}/answers")
def put_answers(session_id: str, payload: AnswersIn):
    """Merge answers into the session; completion and navigation flags are recomputed."""
    machine = sessions.get(session_id)
    machine.set_answers(payload.answers)
    return _session_view(session_id, machine)


@app.post("/public/sessions/{session_id}/navigate")
def navigate(session_id: str, payload: NavigateIn):
    """Jump to a section. Forward jumps require every earlier section to be complete.

    Raises:
        UnknownSectionError: 404 for a section id not in this survey.
        NavigationBlockedError: 409 when an earlier section is incomplete.
    """
    machine = sessions.get(session_id)
    machine.navigate(payload.section_id)
    return _session_view(session_id, machine)


@app.post("/public/sessions/{session_id}/next")
def next_section(session_id: str):
    machine = sessions.get(session_id)
    machine.next_section()
    return _session_view(session_id, machine)


@app.post("/public/sessions/{session_id}/previous")
def previous_section(session_id: str):
    machine = sessions.get(session_id)
    machine.previous_section()
    return _session_view(session_id, machine)


@app.post("/public/sessions/{session_id}/complete")
def complete_session(session_id: str, repo: Repository = Depends(get_repository)):
    """Finalize and persist the response record.

    Returns:
        dict: {id, timestamp, stored_locally}

    Raises:
        IncompleteSurveyError: 422 listing incomplete sections; nothing is stored.
    """
    machine = sessions.get(session_id)
    response = machine.complete()
    response_id = repo.save_response(response)
    sessions.discard(session_id)
    return {
        "id": response_id,
        "timestamp": response.timestamp,
        "stored_locally": bool(getattr(repo.store, "degraded", False)),
    }


# ------------------------
# Admin: account
# ------------------------
@app.post("/admin/register")
def register(payload: RegisterIn, service: UserService = Depends(get_user_service)):
    """Create a school administrator account and sign it in.

    Returns:
        dict: {token, user}
    """
    user = service.register_admin(payload)
    return {"token": issue_token(user["id"]), "user": user_out(user)}


@app.post("/admin/login")
def login(payload: LoginIn, service: UserService = Depends(get_user_service)):
    """Exchange email/password for a bearer token.

    Returns:
        dict: {token, user}

    Raises:
        InvalidCredentialsError: 401 on unknown email or wrong password.
    """
    user = service.authenticate(payload.email, payload.password)
    return {"token": issue_token(user["id"]), "user": user_out(user)}


@app.get("/admin/me")
def me(user: dict = Depends(current_user)):
    return user_out(user)


@app.post("/admin/password")
def change_password(
    payload: PasswordChangeIn,
    user: dict = Depends(current_user),
    service: UserService = Depends(get_user_service),
):
    service.change_password(user, payload)
    return {"ok": True}


@app.get("/admin/school")
def my_school(
    user: dict = Depends(current_user),
    validator: CodeValidator = Depends(get_validator),
    repo: Repository = Depends(get_repository),
):
    """School display info plus every survey code it can collect on."""
    code = user["schoolCode"]
    info = validator.school_display_info(code)
    custom = [
        {"code": d.get("surveyCode"), "name": d.get("name"), "type": "custom", "survey_type": d.get("surveyType")}
        for d in repo.list_custom_surveys(code)
        if d.get("isActive")
    ]
    info["surveys"] = validator.surveys_for_school(code) + custom
    return info


# ------------------------
# Admin: data (indicators)
# ------------------------
@app.get("/admin/responses")
def list_responses(
    role: Optional[str] = None,
    survey_code: Optional[str] = None,
    course: Optional[str] = None,
    letter: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
):
    """Response records of the caller's school, oldest first.

    Returns:
        list[dict]: flat records (metadata keys plus one key per answered field).
    """
    return [r.to_record() for r in _school_responses(repo, user, role, survey_code, course, letter)]


@app.get("/admin/indicators")
def indicators(
    survey_code: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
):
    """Dashboard indicators for both audiences.

    Returns:
        dict: {student: [...], teacher: [...]} each item {field, label, percentage, status, total}
    """
    responses = _school_responses(repo, user, survey_code=survey_code)
    return {STUDENT: role_indicators(responses, STUDENT), TEACHER: role_indicators(responses, TEACHER)}


@app.get("/admin/frequency/{field}")
def field_frequency(
    field: str,
    role: Optional[str] = None,
    survey_code: Optional[str] = None,
    course: Optional[str] = None,
    letter: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
):
    """Counts, percentages, top response and priority for one field."""
    result = frequency(_school_responses(repo, user, role, survey_code, course, letter), field)
    out = result.as_dict()
    out["priority"] = classify_priority(field, result)
    return out


@app.get("/admin/crosstab")
def crosstab(
    field_a: str,
    field_b: str,
    role: Optional[str] = None,
    survey_code: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
):
    return cross_tabulate(_school_responses(repo, user, role, survey_code), field_a, field_b)


@app.get("/admin/summary")
def summary(
    survey_code: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
):
    """Full aggregate snapshot (per-section analyses, by course, comparisons, correlations)."""
    return aggregate_state(_school_responses(repo, user, survey_code=survey_code))


# ------------------------
# Admin: recommendations
# ------------------------
def _recommendation_inputs(payload: ResponseFilter, user, repo, validator):
    role, sections, _ = _survey_layout(validator, payload.survey_code, user["schoolCode"], payload.role)
    responses = _school_responses(repo, user, role, payload.survey_code, payload.course, payload.letter)
    if not responses:
        raise HTTPException(
            status_code=422,
            detail="No hay datos suficientes para generar recomendaciones con los filtros seleccionados.",
        )
    return role, sections, responses


@app.post("/admin/recommendations")
def recommendations(
    payload: ResponseFilter,
    user: dict = Depends(require_permission("recommendations")),
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
    ai: AIClient = Depends(get_ai_client),
):
    """Analysis and recommendation for every answered question, in question-number order.

    Returns:
        dict: {recommendations[], total_responses, degraded, error}
        `degraded` is true when any item used the deterministic fallback text.
    """
    role, sections, responses = _recommendation_inputs(payload, user, repo, validator)
    builder = RecommendationBuilder(ai, _school_name(user, validator))
    recs = builder.build_all(responses, role, sections)
    first_error = next((r.error for r in recs if r.error), None)
    return {
        "recommendations": [r.model_dump() for r in recs],
        "total_responses": len(responses),
        "degraded": any(r.degraded for r in recs),
        "error": first_error,
    }


@app.post("/admin/recommendations/stream")
def recommendations_stream(
    payload: ResponseFilter,
    user: dict = Depends(require_permission("recommendations")),
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
    ai: AIClient = Depends(get_ai_client),
):
    """Same run as /admin/recommendations, one NDJSON line per question as it completes."""
    role, sections, responses = _recommendation_inputs(payload, user, repo, validator)
    builder = RecommendationBuilder(ai, _school_name(user, validator))

    def lines():
        for rec in builder.iter_recommendations(responses, role, sections):
            yield json.dumps(rec.model_dump(), ensure_ascii=False) + "\n"

    return StreamingResponse(lines(), media_type="application/x-ndjson")


@app.post("/admin/export/recommendations.pdf")
def export_recommendations_pdf(
    payload: RecommendationPdfRequest,
    user: dict = Depends(require_permission("recommendations")),
    validator: CodeValidator = Depends(get_validator),
):
    """Render already generated recommendations as a PDF report.

    Returns:
        Response: application/pdf attachment `Recomendaciones_<school>_<survey>_<date>.pdf`.
    """
    if not payload.recommendations:
        raise HTTPException(status_code=422, detail="No hay recomendaciones para exportar. Genera las recomendaciones primero.")
    school = _school_name(user, validator)
    pdf = recommendations_to_pdf(
        payload.recommendations,
        school_name=school,
        survey_name=payload.survey_name or "Todas las Encuestas",
        total_responses=payload.total_responses,
        course=payload.course,
        letter=payload.letter,
    )
    filename = export_filename("pdf", school, payload.survey_name or "Todas las Encuestas")
    return Response(content=pdf, media_type="application/pdf",
                    headers={"Content-Disposition": f"attachment; filename={filename}"})


# ------------------------
# Admin: exports
# ------------------------
def _export_frame(role, survey_code, course, letter, user, repo, validator):
    role, sections, name = _survey_layout(validator, survey_code, user["schoolCode"], role or STUDENT)
    responses = _school_responses(repo, user, role, survey_code, course, letter)
    return responses_frame(responses, role, sections), name or f"Respuestas {user['schoolCode']}"


@app.get("/admin/export/responses.xlsx")
def export_responses_xlsx(
    role: str = STUDENT,
    survey_code: Optional[str] = None,
    course: Optional[str] = None,
    letter: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
):
    """Export matching responses to a spreadsheet.

    Returns:
        Response: xlsx attachment named `<survey name>_<YYYY-MM-DD>.xlsx`.
    """
    df, name = _export_frame(role, survey_code, course, letter, user, repo, validator)
    return Response(
        content=responses_to_xlsx(df),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={export_filename('xlsx', name)}"},
    )


@app.get("/admin/export/responses.csv")
def export_responses_csv(
    role: str = STUDENT,
    survey_code: Optional[str] = None,
    course: Optional[str] = None,
    letter: Optional[str] = None,
    user: dict = Depends(require_permission("indicators")),
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
):
    df, name = _export_frame(role, survey_code, course, letter, user, repo, validator)
    return Response(content=responses_to_csv(df), media_type="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={export_filename('csv', name)}"})


# ------------------------
# Admin: AI agent
# ------------------------
@app.get("/admin/chat/welcome")
def chat_welcome(
    user: dict = Depends(require_permission("aiAgent")),
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
    ai: AIClient = Depends(get_ai_client),
):
    """Greeting plus the newest response timestamp the client should echo back."""
    agent = ChatAgent(ai, _school_name(user, validator))
    return {"text": agent.welcome(), "latest_timestamp": latest_timestamp(repo.list_by_school(user["schoolCode"]))}


@app.post("/admin/chat", response_model=ChatReplyOut)
def chat(
    payload: ChatRequest,
    user: dict = Depends(require_permission("aiAgent")),
    repo: Repository = Depends(get_repository),
    validator: CodeValidator = Depends(get_validator),
    ai: AIClient = Depends(get_ai_client),
):
    """One conversational turn over the school's full, current response set.

    Args:
        payload (ChatRequest): message, prior turns (roles user/ai) and the last timestamp seen.

    Returns:
        ChatReplyOut: reply text; `degraded`/`error` set when the AI call failed.
    """
    if not payload.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    agent = ChatAgent(ai, _school_name(user, validator))
    reply = agent.reply(
        payload.message,
        repo.list_by_school(user["schoolCode"]),
        payload.history,
        payload.last_seen_timestamp,
    )
    return ChatReplyOut(**reply.__dict__)


# ------------------------
# Admin: secondary users
# ------------------------
@app.get("/admin/users")
def list_users(user: dict = Depends(require_admin), service: UserService = Depends(get_user_service)):
    return [user_out(u) for u in service.list_secondary_users(user)]


@app.post("/admin/users")
def create_user(
    payload: SecondaryUserCreate,
    user: dict = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    """Create a secondary user for the caller's school.

    Raises:
        SecondaryUserLimitError: 409 once the school has 5 secondary users.
        DuplicateEmailError: 409 when the email is already registered.
    """
    return user_out(service.create_secondary_user(user, payload))


@app.put("/admin/users/{user_id}")
def update_user(
    user_id: str,
    payload: SecondaryUserUpdate,
    user: dict = Depends(require_admin),
    service: UserService = Depends(get_user_service),
):
    return user_out(service.update_secondary_user(user, user_id, payload))


@app.delete("/admin/users/{user_id}")
def delete_user(user_id: str, user: dict = Depends(require_admin), service: UserService = Depends(get_user_service)):
    service.delete_secondary_user(user, user_id)
    return {"ok": True}


# ------------------------
# Admin: custom surveys
# ------------------------
@app.get("/admin/custom-surveys")
def list_custom_surveys(
    user: dict = Depends(require_permission("surveyManagement")),
    service: CustomSurveyService = Depends(get_custom_survey_service),
):
    """Custom surveys of the caller's school, most recently modified first."""
    return [survey_out(d) for d in service.list_for_school(user["schoolCode"])]


@app.post("/admin/custom-surveys")
def create_custom_survey(
    payload: CustomSurveyCreate,
    user: dict = Depends(require_permission("surveyManagement")),
    service: CustomSurveyService = Depends(get_custom_survey_service),
):
    """Create a custom survey; a code is generated when none is given.

    Raises:
        SchemaDefinitionError: 422 on duplicate fields or a guard on a later field.
    """
    return survey_out(service.create(user, payload))


@app.put("/admin/custom-surveys/{survey_id}")
def update_custom_survey(
    survey_id: str,
    payload: CustomSurveyUpdate,
    user: dict = Depends(require_permission("surveyManagement")),
    service: CustomSurveyService = Depends(get_custom_survey_service),
):
    return survey_out(service.update(user, survey_id, payload))


@app.delete("/admin/custom-surveys/{survey_id}")
def delete_custom_survey(
    survey_id: str,
    user: dict = Depends(require_permission("surveyManagement")),
    service: CustomSurveyService = Depends(get_custom_survey_service),
):
    service.delete(user, survey_id)
    return {"ok": True}


@app.post("/admin/custom-surveys/code")
def new_survey_code(user: dict = Depends(require_permission("surveyManagement"))):
    return {"survey_code": generate_survey_code(user["schoolCode"])}


# ------------------------
# Platform operators
# ------------------------
@app.get("/ops/responses", dependencies=[Depends(verify_admin)])
def all_responses(repo: Repository = Depends(get_repository)):
    """Every stored response across schools."""
    return [r.to_record() for r in repo.list_all()]


@app.get("/ops/custom-surveys", dependencies=[Depends(verify_admin)])
def all_custom_surveys(service: CustomSurveyService = Depends(get_custom_survey_service)):
    return [survey_out(d) for d in service.list_all()]


@app.get("/ops/surveys/audit", dependencies=[Depends(verify_admin)])
def survey_audit(validator: CodeValidator = Depends(get_validator)):
    """Whitelisted predefined surveys grouped by school."""
    return validator.audit_info()
