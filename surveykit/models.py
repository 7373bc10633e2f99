import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QuestionType(str, enum.Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    SELECT = "select"
    RATING = "rating"
    DATE = "date"


# types whose answers are picked from Question.options
CHOICE_TYPES = frozenset({QuestionType.RADIO, QuestionType.CHECKBOX, QuestionType.SELECT})

DEFAULT_SURVEY_SETTINGS = {
    "allowAnonymous": True,
    "requireLogin": False,
    "multipleResponses": False,
    "showResults": False,
}


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String(100), nullable=False)
    hashed_password = Column(String, nullable=False)  # opaque to this package
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    surveys = relationship("Survey", back_populates="creator")


class Survey(Base):
    __tablename__ = "surveys"

    id = Column(String(36), primary_key=True, default=_new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    is_published = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    settings = Column(JSON, nullable=False, default=lambda: dict(DEFAULT_SURVEY_SETTINGS))
    published_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    creator = relationship("User", back_populates="surveys")
    # questions and responses are removed with bulk deletes in crud_survey
    questions = relationship(
        "Question", back_populates="survey", order_by="Question.order"
    )
    responses = relationship("Response", back_populates="survey")


class Question(Base):
    __tablename__ = "questions"

    id = Column(String(36), primary_key=True, default=_new_id)
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    type = Column(String, nullable=False, default=QuestionType.TEXT.value)
    options = Column(JSON, nullable=False, default=list)
    required = Column(Boolean, default=False, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    validation = Column(JSON, nullable=False, default=dict)

    survey = relationship("Survey", back_populates="questions")

    __table_args__ = (
        UniqueConstraint("survey_id", "order", name="uq_questions_survey_order"),
    )


class Respondent(Base):
    __tablename__ = "respondents"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String, nullable=True, index=True)
    name = Column(String, nullable=True)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, nullable=False, default=dict)
    # set when the respondent stands for an authenticated user
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    responses = relationship("Response", back_populates="respondent")


class Response(Base):
    __tablename__ = "responses"

    id = Column(String(36), primary_key=True, default=_new_id)
    survey_id = Column(String(36), ForeignKey("surveys.id"), nullable=False, index=True)
    respondent_id = Column(
        String(36), ForeignKey("respondents.id"), nullable=True, index=True
    )
    answers = Column(JSON, nullable=False, default=dict)
    is_complete = Column(Boolean, default=False, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(Text, nullable=True)
    # only filled when the survey forbids multiple responses; NULLs never collide
    respondent_key = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    survey = relationship("Survey", back_populates="responses")
    respondent = relationship("Respondent", back_populates="responses")

    __table_args__ = (
        UniqueConstraint(
            "survey_id", "respondent_key", name="uq_responses_survey_respondent"
        ),
    )
