import logging
from typing import Any, List, Optional

from sqlalchemy.orm import sessionmaker

from surveykit.crud import crud_survey, crud_user
from surveykit.database import transaction
from surveykit.errors import Forbidden, InvalidInput, NotFound, Unauthenticated
from surveykit.identity import Identity
from surveykit.policy import can_read, can_write
from surveykit.schemas import (
    SurveyCreate,
    SurveyListItem,
    SurveyRead,
    SurveyUpdate,
    SurveyView,
)

from .base import Clock, coerce_payload, require_identity, utcnow

logger = logging.getLogger(__name__)


class SurveyAuthoringService:
    """Create, edit, publish, delete and view surveys.

    Every mutating operation runs in one transaction: the survey row and its
    question set are committed together or not at all.
    """

    def __init__(self, session_factory: sessionmaker, clock: Clock = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    async def list_owned(self, identity: Optional[Identity]) -> List[SurveyListItem]:
        identity = require_identity(identity)
        async with transaction(self._session_factory) as db:
            surveys = await crud_survey.get_surveys_by_creator(db, identity.id)
            survey_ids = [survey.id for survey in surveys]
            questions = await crud_survey.get_questions_by_survey(db, survey_ids)
            counts = await crud_survey.count_responses(db, survey_ids)
            return [
                SurveyListItem.from_model(
                    survey,
                    questions[survey.id],
                    total_responses=counts[survey.id][0],
                    response_count=counts[survey.id][1],
                )
                for survey in surveys
            ]

    async def create(self, identity: Optional[Identity], payload: Any) -> SurveyRead:
        identity = require_identity(identity)
        survey_in = coerce_payload(SurveyCreate, payload)
        now = self._clock()

        async with transaction(self._session_factory) as db:
            if await crud_user.get_user(db, identity.id) is None:
                logger.warning("Survey creation by unknown user %s rejected", identity.id)
                raise Unauthenticated("Unknown user.")
            db_survey = await crud_survey.create_survey(db, identity.id, survey_in, now)
            questions = await crud_survey.replace_questions(
                db, db_survey.id, survey_in.questions
            )
            result = SurveyRead.from_model(db_survey, questions)

        logger.info(
            "Survey %s created by user %s with %d questions",
            result.id,
            identity.id,
            len(result.questions),
        )
        return result

    async def update(
        self, identity: Optional[Identity], survey_id: str, payload: Any
    ) -> SurveyRead:
        identity = require_identity(identity)
        survey_in = coerce_payload(SurveyUpdate, payload)
        now = self._clock()

        async with transaction(self._session_factory) as db:
            db_survey = await self._load_owned(db, identity, survey_id)
            await crud_survey.update_survey(db, db_survey, survey_in, now)
            # whole-set replacement: question ids do not survive an edit
            questions = await crud_survey.replace_questions(
                db, survey_id, survey_in.questions
            )
            result = SurveyRead.from_model(db_survey, questions)

        logger.info(
            "Survey %s updated by user %s, question set replaced (%d questions)",
            survey_id,
            identity.id,
            len(result.questions),
        )
        return result

    async def set_published(
        self, identity: Optional[Identity], survey_id: str, is_published: bool
    ) -> SurveyRead:
        identity = require_identity(identity)
        if not isinstance(is_published, bool):
            raise InvalidInput("isPublished must be a boolean.", field="isPublished")
        now = self._clock()

        async with transaction(self._session_factory) as db:
            db_survey = await self._load_owned(db, identity, survey_id)
            await crud_survey.set_published(db, db_survey, is_published, now)
            questions = await crud_survey.get_questions(db, survey_id)
            result = SurveyRead.from_model(db_survey, questions)

        logger.info(
            "Survey %s %s by user %s",
            survey_id,
            "published" if is_published else "unpublished",
            identity.id,
        )
        return result

    async def delete(self, identity: Optional[Identity], survey_id: str) -> None:
        identity = require_identity(identity)
        async with transaction(self._session_factory) as db:
            await self._load_owned(db, identity, survey_id)
            await crud_survey.delete_survey(db, survey_id)
        logger.info("Survey %s deleted by user %s", survey_id, identity.id)

    async def get_for_view(
        self, identity: Optional[Identity], survey_id: str
    ) -> SurveyView:
        async with transaction(self._session_factory) as db:
            db_survey = await crud_survey.get_survey(db, survey_id)
            if db_survey is None:
                raise NotFound("Survey not found.")
            if not can_read(identity, db_survey):
                raise Forbidden("Survey not accessible.")
            questions = await crud_survey.get_questions(db, survey_id)
            creator_name = await crud_survey.get_creator_name(db, db_survey.creator_id)
            return SurveyView.from_model(db_survey, questions, creator_name=creator_name)

    async def _load_owned(self, db, identity: Identity, survey_id: str):
        db_survey = await crud_survey.get_survey_for_update(db, survey_id)
        if db_survey is None:
            raise NotFound("Survey not found.")
        if not can_write(identity, db_survey):
            logger.info(
                "User %s denied write access to survey %s", identity.id, survey_id
            )
            raise Forbidden("Not authorized to modify this survey.")
        return db_survey
