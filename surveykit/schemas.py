from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .models import CHOICE_TYPES, QuestionType


# --- Schemas for survey definitions ---


class SurveySettings(BaseModel):
    """Fixed-shape survey settings. Stored and serialized with camelCase keys."""

    allow_anonymous: bool = Field(default=True, alias="allowAnonymous")
    require_login: bool = Field(default=False, alias="requireLogin")
    multiple_responses: bool = Field(default=False, alias="multipleResponses")
    show_results: bool = Field(default=False, alias="showResults")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class QuestionCreate(BaseModel):
    text: str = Field(..., min_length=1)
    type: QuestionType = QuestionType.TEXT
    options: List[str] = Field(default_factory=list)
    required: bool = False
    validation: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def drop_unused_options(self):
        if self.type not in CHOICE_TYPES:
            self.options = []
        return self


def _expiry_in_utc(value: Optional[datetime]) -> Optional[datetime]:
    # naive values are taken as UTC; SQLite keeps only the wall-clock part
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SurveyCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    questions: List[QuestionCreate] = Field(default_factory=list)
    settings: SurveySettings = Field(default_factory=SurveySettings)
    is_active: bool = True
    expires_at: Optional[datetime] = None

    expires_at_in_utc = field_validator("expires_at")(_expiry_in_utc)


class SurveyUpdate(BaseModel):
    """A survey edit. The question set is always replaced as a whole.

    Fields left out keep their stored value; `settings` is merged key by key
    into the stored settings.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    questions: List[QuestionCreate] = Field(default_factory=list)
    settings: Optional[SurveySettings] = None
    is_active: Optional[bool] = None
    expires_at: Optional[datetime] = None

    expires_at_in_utc = field_validator("expires_at")(_expiry_in_utc)


class PublishRequest(BaseModel):
    is_published: bool = Field(..., alias="isPublished")

    model_config = ConfigDict(populate_by_name=True)


# --- Schemas for submitted responses ---


class RespondentInfo(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, max_length=200)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ClientMeta(BaseModel):
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class SubmissionCreate(BaseModel):
    answers: Dict[str, Any] = Field(default_factory=dict)
    respondent: Optional[RespondentInfo] = None


# --- Read models returned to callers ---


class QuestionRead(BaseModel):
    id: str
    survey_id: str
    text: str
    type: QuestionType
    options: List[str] = Field(default_factory=list)
    required: bool
    order: int
    validation: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class SurveyRead(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    creator_id: str
    is_published: bool
    is_active: bool
    settings: SurveySettings
    published_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    questions: List[QuestionRead] = Field(default_factory=list)

    @classmethod
    def from_model(cls, survey, questions, **extra):
        # built field by field so no lazy relationship load happens outside the session
        return cls(
            id=survey.id,
            title=survey.title,
            description=survey.description,
            creator_id=survey.creator_id,
            is_published=survey.is_published,
            is_active=survey.is_active,
            settings=SurveySettings.model_validate(survey.settings or {}),
            published_at=survey.published_at,
            expires_at=survey.expires_at,
            created_at=survey.created_at,
            updated_at=survey.updated_at,
            questions=[QuestionRead.model_validate(q) for q in questions],
            **extra,
        )


class SurveyListItem(SurveyRead):
    total_responses: int = 0
    response_count: int = 0  # completed responses only


class SurveyView(SurveyRead):
    creator_name: Optional[str] = None


class ResponseRead(BaseModel):
    id: str
    survey_id: str
    respondent_id: Optional[str] = None
    answers: Dict[str, Any]
    is_complete: bool
    submitted_at: Optional[datetime] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseModel):
    error: str
    detail: str


class SurveyDeleteResponse(BaseModel):
    survey_id: str
    message: str = "Survey deleted successfully."
