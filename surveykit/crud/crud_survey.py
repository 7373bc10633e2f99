from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import case, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from surveykit.models import Question, Response, Survey, User
from surveykit.schemas import QuestionCreate, SurveyCreate, SurveySettings, SurveyUpdate


async def get_survey(db: AsyncSession, survey_id: str) -> Optional[Survey]:
    if survey_id is None:
        return None
    return await db.get(Survey, survey_id)


async def get_survey_for_update(db: AsyncSession, survey_id: str) -> Optional[Survey]:
    # row lock where the backend supports it; SQLite ignores FOR UPDATE
    result = await db.execute(
        select(Survey).where(Survey.id == survey_id).with_for_update()
    )
    return result.scalar_one_or_none()


async def get_questions(db: AsyncSession, survey_id: str) -> List[Question]:
    result = await db.execute(
        select(Question).where(Question.survey_id == survey_id).order_by(Question.order)
    )
    return list(result.scalars().all())


async def get_questions_by_survey(
    db: AsyncSession, survey_ids: Sequence[str]
) -> Dict[str, List[Question]]:
    grouped: Dict[str, List[Question]] = {survey_id: [] for survey_id in survey_ids}
    if not survey_ids:
        return grouped
    result = await db.execute(
        select(Question)
        .where(Question.survey_id.in_(survey_ids))
        .order_by(Question.survey_id, Question.order)
    )
    for question in result.scalars().all():
        grouped[question.survey_id].append(question)
    return grouped


async def get_surveys_by_creator(db: AsyncSession, creator_id: str) -> List[Survey]:
    result = await db.execute(
        select(Survey)
        .where(Survey.creator_id == creator_id)
        .order_by(Survey.created_at.desc(), Survey.id)
    )
    return list(result.scalars().all())


async def count_responses(
    db: AsyncSession, survey_ids: Sequence[str]
) -> Dict[str, Tuple[int, int]]:
    """Return ``{survey_id: (total, completed)}`` for the given surveys."""
    counts = {survey_id: (0, 0) for survey_id in survey_ids}
    if not survey_ids:
        return counts
    completed = func.sum(case((Response.is_complete.is_(True), 1), else_=0))
    result = await db.execute(
        select(Response.survey_id, func.count(Response.id), completed)
        .where(Response.survey_id.in_(survey_ids))
        .group_by(Response.survey_id)
    )
    for survey_id, total, done in result.all():
        counts[survey_id] = (int(total), int(done or 0))
    return counts


async def get_creator_name(db: AsyncSession, creator_id: str) -> Optional[str]:
    result = await db.execute(select(User.name).where(User.id == creator_id))
    return result.scalar_one_or_none()


async def create_survey(
    db: AsyncSession, creator_id: str, survey_in: SurveyCreate, now: datetime
) -> Survey:
    db_survey = Survey(
        title=survey_in.title,
        description=survey_in.description,
        creator_id=creator_id,
        is_published=False,
        is_active=survey_in.is_active,
        settings=survey_in.settings.model_dump(by_alias=True),
        expires_at=survey_in.expires_at,
        created_at=now,
        updated_at=now,
    )
    db.add(db_survey)
    await db.flush()  # applies the id default before questions reference it
    return db_survey


async def update_survey(
    db: AsyncSession, db_survey: Survey, survey_in: SurveyUpdate, now: datetime
) -> Survey:
    """Apply an edit. Only fields present in ``survey_in`` are written."""
    changes = survey_in.model_dump(exclude_unset=True, exclude={"questions"})
    db_survey.title = survey_in.title
    if "description" in changes:
        db_survey.description = survey_in.description
    if survey_in.settings is not None:
        sent = survey_in.settings.model_dump(by_alias=True, exclude_unset=True)
        merged = SurveySettings.model_validate({**(db_survey.settings or {}), **sent})
        db_survey.settings = merged.model_dump(by_alias=True)
    if survey_in.is_active is not None:
        db_survey.is_active = survey_in.is_active
    # an explicit null clears the expiry
    if "expires_at" in changes:
        db_survey.expires_at = survey_in.expires_at
    db_survey.updated_at = now
    await db.flush()
    return db_survey


async def set_published(
    db: AsyncSession, db_survey: Survey, is_published: bool, now: datetime
) -> Survey:
    db_survey.is_published = is_published
    db_survey.published_at = now if is_published else None
    db_survey.updated_at = now
    await db.flush()
    return db_survey


async def replace_questions(
    db: AsyncSession, survey_id: str, questions_in: Sequence[QuestionCreate]
) -> List[Question]:
    """Delete every question of the survey, then insert ``questions_in``.

    ``order`` is the position in ``questions_in``; old question ids are gone.
    """
    await db.execute(delete(Question).where(Question.survey_id == survey_id))

    questions = [
        Question(
            survey_id=survey_id,
            text=question_in.text,
            type=question_in.type.value,
            options=list(question_in.options),
            required=question_in.required,
            order=index,
            validation=dict(question_in.validation),
        )
        for index, question_in in enumerate(questions_in)
    ]
    if questions:
        db.add_all(questions)
    await db.flush()
    return questions


async def delete_survey(db: AsyncSession, survey_id: str) -> None:
    # responses and questions first, they reference the survey
    await db.execute(delete(Response).where(Response.survey_id == survey_id))
    await db.execute(delete(Question).where(Question.survey_id == survey_id))
    await db.execute(delete(Survey).where(Survey.id == survey_id))
