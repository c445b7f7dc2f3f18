# schemas.py
from types import MappingProxyType
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Any, Dict, List, Mapping, Optional, Literal

from survey_schema import CUSTOM_FIELD_PREFIX, METADATA_FIELDS

Role = Literal["student", "teacher"]
Priority = Literal["high", "medium", "low"]


# ------------------------
# Response records
# ------------------------
class SurveyResponse(BaseModel):
    """One completed questionnaire. Never mutated after creation."""
    id: Optional[str] = None
    school_code: str
    survey_code: str
    role: Role = "student"
    course: Optional[str] = None
    letter: Optional[str] = None
    timestamp: int
    answers: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    extensions: Mapping[str, str] = Field(default_factory=dict, validate_default=True)

    class Config:
        frozen = True

    @field_validator("answers", "extensions")
    @classmethod
    def _read_only(cls, v):
        return MappingProxyType(dict(v))

    def value(self, field: str) -> str:
        if field.startswith(CUSTOM_FIELD_PREFIX):
            return self.extensions.get(field, "")
        return self.answers.get(field, "")

    def to_record(self) -> dict:
        """Flat persisted shape: one key per answered field plus the metadata keys."""
        record = {k: v for k, v in self.answers.items() if k not in METADATA_FIELDS}
        record.update((k, v) for k, v in self.extensions.items() if k not in METADATA_FIELDS)
        record.update({
            "id": self.id,
            "schoolCode": self.school_code,
            "surveyCode": self.survey_code,
            "surveyType": self.role,
            "course": self.course,
            "letter": self.letter,
            "timestamp": self.timestamp,
        })
        return record

    @classmethod
    def from_record(cls, record: dict) -> "SurveyResponse":
        answers, extensions = {}, {}
        for k, v in record.items():
            if k in METADATA_FIELDS or v in (None, ""):
                continue
            (extensions if k.startswith(CUSTOM_FIELD_PREFIX) else answers)[k] = str(v)
        return cls(
            id=record.get("id"),
            school_code=record.get("schoolCode", ""),
            survey_code=record.get("surveyCode", ""),
            role=record.get("surveyType") or "student",
            course=record.get("course") or None,
            letter=record.get("letter") or None,
            timestamp=int(record.get("timestamp") or 0),
            answers=answers,
            extensions=extensions,
        )


# ------------------------
# Public survey flow
# ------------------------
class SessionCreate(BaseModel):
    school_code: str
    survey_code: str
    course: Optional[str] = None
    letter: Optional[str] = None

class AnswersIn(BaseModel):
    answers: Dict[str, str]

class NavigateIn(BaseModel):
    section_id: str


# ------------------------
# Custom surveys
# ------------------------
class CustomQuestionIn(BaseModel):
    number: str
    text: str
    field: str
    options: List[str] = []
    required: bool = True
    conditional_field: Optional[str] = None
    conditional_value: Optional[str] = None

class CustomSectionIn(BaseModel):
    id: str
    name: str
    questions: List[CustomQuestionIn] = []

class CustomSurveyCreate(BaseModel):
    name: str
    description: Optional[str] = None
    survey_type: Role = "student"
    survey_code: Optional[str] = None     # generated when omitted
    is_active: bool = True
    sections: List[CustomSectionIn] = []

class CustomSurveyUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    survey_type: Optional[Role] = None
    is_active: Optional[bool] = None
    sections: Optional[List[CustomSectionIn]] = None

class CustomSurveyOut(BaseModel):
    id: str
    school_code: str
    survey_code: str
    name: str
    description: Optional[str] = None
    survey_type: Role = "student"
    is_active: bool
    created_by: Optional[str] = None
    created_at: int
    last_modified: int
    sections: List[CustomSectionIn] = []


# ------------------------
# Admin users
# ------------------------
class Permissions(BaseModel):
    indicators: bool = True
    recommendations: bool = True
    aiAgent: bool = False
    surveyManagement: bool = False

class AdminUserOut(BaseModel):
    id: str
    email: str
    first_name: str = ""
    last_name: str = ""
    school_code: str
    school_name: str = ""
    user_type: Literal["admin", "secondary"] = "admin"
    created_by: Optional[str] = None
    position: Optional[str] = None
    permissions: Optional[Permissions] = None
    created_at: Optional[int] = None

class RegisterIn(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str
    school_code: str

class LoginIn(BaseModel):
    email: EmailStr
    password: str

class PasswordChangeIn(BaseModel):
    email: EmailStr
    current_password: str
    new_password: str

class SecondaryUserCreate(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str
    position: str
    permissions: Permissions = Field(default_factory=Permissions)

class SecondaryUserUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[EmailStr] = None
    position: Optional[str] = None
    permissions: Optional[Permissions] = None


# ------------------------
# Recommendations / chat
# ------------------------
class ResponseFilter(BaseModel):
    role: Role = "student"
    survey_code: Optional[str] = None
    course: Optional[str] = None
    letter: Optional[str] = None

class QuestionRecommendation(BaseModel):
    question_number: str
    question_text: str
    field: str
    section: str = ""
    analysis: str
    recommendation: str
    priority: Priority
    degraded: bool = False
    error: Optional[str] = None

class RecommendationPdfRequest(BaseModel):
    recommendations: List[QuestionRecommendation]
    survey_name: str = ""
    total_responses: int = 0
    course: Optional[str] = None
    letter: Optional[str] = None

class ChatTurn(BaseModel):
    role: Literal["user", "ai", "assistant"]
    content: str

class ChatRequest(BaseModel):
    message: str
    history: List[ChatTurn] = []
    last_seen_timestamp: Optional[int] = None

class ChatReplyOut(BaseModel):
    text: str
    degraded: bool = False
    error: Optional[str] = None
    data_updated: bool = False
    latest_timestamp: Optional[int] = None

class CodeCheck(BaseModel):
    valid: bool
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    extra: Dict[str, Any] = {}
