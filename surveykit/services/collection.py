import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from surveykit.crud import crud_response, crud_survey, crud_user
from surveykit.database import transaction
from surveykit.errors import Conflict, Forbidden, InvalidInput, NotFound, Unauthenticated
from surveykit.identity import Identity
from surveykit.models import Respondent, Survey
from surveykit.schemas import ClientMeta, RespondentInfo, ResponseRead, SurveySettings
from surveykit.validation import validate_answers

from .base import Clock, as_utc, coerce_payload, utcnow

logger = logging.getLogger(__name__)

ALREADY_RESPONDED = "You have already responded to this survey."


class RespondentRace(Conflict):
    """Another submission created the respondent for this user first."""


class ResponseCollectionService:
    """Accepts completed responses for published surveys."""

    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def submit(
        self,
        identity: Optional[Identity],
        survey_id: str,
        answers: Any,
        client_meta: Any = None,
        respondent_info: Any = None,
    ) -> ResponseRead:
        """Validate and store one completed response.

        Checks run in a fixed order and stop at the first failure: survey
        exists, survey is open to this caller, no earlier completed response
        when only one is allowed, answers match the current questions. Only
        then is a respondent resolved or created and the response written.
        """
        if not isinstance(answers, Mapping):
            raise InvalidInput("Answers must be an object keyed by question id.", field="answers")
        meta = coerce_payload(ClientMeta, client_meta or {})
        info = None
        if respondent_info is not None:
            info = coerce_payload(RespondentInfo, respondent_info)
        email = info.email.lower() if info is not None and info.email else None
        now = self._clock()

        try:
            result = await self._store(identity, survey_id, answers, meta, info, email, now)
        except RespondentRace:
            # the other submission committed the respondent, the retry finds it
            logger.info("Respondent for survey %s created concurrently, retrying", survey_id)
            result = await self._store(identity, survey_id, answers, meta, info, email, now)

        logger.info(
            "Response %s stored for survey %s (respondent %s)",
            result.id,
            survey_id,
            result.respondent_id or "anonymous",
        )
        return result

    async def _store(
        self,
        identity: Optional[Identity],
        survey_id: str,
        answers: Mapping[str, Any],
        meta: ClientMeta,
        info: Optional[RespondentInfo],
        email: Optional[str],
        now: datetime,
    ) -> ResponseRead:
        async with transaction(self._session_factory) as db:
            db_survey = await crud_survey.get_survey(db, survey_id)
            if db_survey is None:
                raise NotFound("Survey not found.")
            settings = SurveySettings.model_validate(db_survey.settings or {})
            self._check_open(identity, db_survey, settings, now)

            respondent = await self._find_respondent(db, identity, email)
            if not settings.multiple_responses and respondent is not None:
                existing = await crud_response.find_completed_response(
                    db, survey_id, respondent.id
                )
                if existing is not None:
                    logger.info(
                        "Duplicate response to survey %s from respondent %s rejected",
                        survey_id,
                        respondent.id,
                    )
                    raise Forbidden(ALREADY_RESPONDED)

            questions = await crud_survey.get_questions(db, survey_id)
            clean_answers = validate_answers(questions, answers)

            if respondent is None:
                respondent = await self._create_respondent(db, identity, info, email, now)

            respondent_key = None
            if not settings.multiple_responses:
                respondent_key = self._respondent_key(identity, email)

            try:
                db_response = await crud_response.create_response(
                    db,
                    survey_id=survey_id,
                    answers=clean_answers,
                    respondent_id=respondent.id if respondent is not None else None,
                    respondent_key=respondent_key,
                    submitted_at=now,
                    ip_address=meta.ip,
                    user_agent=meta.user_agent,
                )
            except IntegrityError as e:
                # a concurrent first submission won the unique (survey, respondent) slot
                logger.info(
                    "Concurrent duplicate response to survey %s rejected", survey_id
                )
                raise Forbidden(ALREADY_RESPONDED) from e
            return ResponseRead.model_validate(db_response)

    @staticmethod
    def _check_open(
        identity: Optional[Identity],
        survey: Survey,
        settings: SurveySettings,
        now: datetime,
    ) -> None:
        if not survey.is_published:
            raise Forbidden("Survey is not accepting responses.")
        if not survey.is_active:
            raise Forbidden("Survey is closed.")
        expires_at = as_utc(survey.expires_at)
        if expires_at is not None and expires_at <= now:
            raise Forbidden("Survey has expired.")
        if identity is None and settings.require_login:
            raise Forbidden("Login is required to respond to this survey.")
        if identity is None and not settings.allow_anonymous:
            raise Forbidden("Anonymous responses are not allowed for this survey.")

    @staticmethod
    async def _find_respondent(
        db, identity: Optional[Identity], email: Optional[str]
    ) -> Optional[Respondent]:
        # an authenticated caller is matched by identity, never by email
        if identity is not None:
            return await crud_response.get_respondent_for_user(db, identity.id)
        if email:
            return await crud_response.get_respondent_by_email(db, email)
        return None

    @staticmethod
    async def _create_respondent(
        db,
        identity: Optional[Identity],
        info: Optional[RespondentInfo],
        email: Optional[str],
        now: datetime,
    ) -> Optional[Respondent]:
        if identity is not None:
            user = await crud_user.get_user(db, identity.id)
            if user is None:
                raise Unauthenticated("Unknown user.")
            try:
                return await crud_response.create_respondent(
                    db,
                    email=email or user.email,
                    name=(info.name if info is not None and info.name else user.name),
                    metadata=info.metadata if info is not None else None,
                    user_id=user.id,
                    now=now,
                )
            except IntegrityError as e:
                raise RespondentRace(
                    "The respondent was created concurrently, please retry."
                ) from e
        if info is None or not (email or info.name or info.metadata):
            return None
        return await crud_response.create_respondent(
            db, email=email, name=info.name, metadata=info.metadata, now=now
        )

    @staticmethod
    def _respondent_key(identity: Optional[Identity], email: Optional[str]) -> Optional[str]:
        if identity is not None:
            return f"user:{identity.id}"
        if email:
            return f"email:{email}"
        return None
