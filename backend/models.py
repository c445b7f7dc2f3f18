from sqlalchemy import Column, String, Text, BigInteger, Boolean, JSON
from db import Base

# Each table stores its filterable keys as real columns and the rest of the
# document in `data`, so the document store can round-trip arbitrary records.

class SurveyResponseRow(Base):
    __tablename__ = "survey_responses"
    id = Column(String(64), primary_key=True, index=True)
    school_code = Column(String(32), index=True, nullable=False)
    survey_code = Column(String(64), index=True, nullable=False)
    survey_type = Column(String(16), index=True, nullable=False, default="student")
    timestamp = Column(BigInteger, nullable=False)
    data = Column(JSON, nullable=False, default=dict)

class AdminUserRow(Base):
    __tablename__ = "admin_users"
    id = Column(String(64), primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    school_code = Column(String(32), index=True, nullable=False)
    user_type = Column(String(16), nullable=False, default="admin")
    created_by = Column(String(64), index=True, nullable=True)
    data = Column(JSON, nullable=False, default=dict)

class CustomSurveyRow(Base):
    __tablename__ = "custom_surveys"
    id = Column(String(64), primary_key=True, index=True)
    school_code = Column(String(32), index=True, nullable=False)
    survey_code = Column(String(64), index=True, nullable=False)
    is_active = Column(Boolean, default=True)
    last_modified = Column(BigInteger, nullable=False)
    description = Column(Text, nullable=True)
    data = Column(JSON, nullable=False, default=dict)

# collection name -> (ORM class, {document key: column name})
COLLECTIONS = {
    "survey_responses": (SurveyResponseRow, {
        "schoolCode": "school_code", "surveyCode": "survey_code",
        "surveyType": "survey_type", "timestamp": "timestamp",
    }),
    "admin_users": (AdminUserRow, {
        "email": "email", "schoolCode": "school_code", "userType": "user_type", "createdBy": "created_by",
    }),
    "custom_surveys": (CustomSurveyRow, {
        "schoolCode": "school_code", "surveyCode": "survey_code", "isActive": "is_active",
        "lastModified": "last_modified", "description": "description",
    }),
}
