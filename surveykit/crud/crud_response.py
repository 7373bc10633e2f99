from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from surveykit.models import Respondent, Response


async def get_respondent_for_user(db: AsyncSession, user_id: str) -> Optional[Respondent]:
    result = await db.execute(select(Respondent).where(Respondent.user_id == user_id))
    return result.scalar_one_or_none()


async def get_respondent_by_email(db: AsyncSession, email: str) -> Optional[Respondent]:
    # oldest first so repeated anonymous submissions keep resolving to the same row
    result = await db.execute(
        select(Respondent)
        .where(Respondent.email == email, Respondent.user_id.is_(None))
        .order_by(Respondent.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_respondent(
    db: AsyncSession,
    *,
    email: Optional[str] = None,
    name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Respondent:
    db_respondent = Respondent(
        email=email,
        name=name,
        meta=dict(metadata or {}),
        user_id=user_id,
    )
    if now is not None:
        db_respondent.created_at = now
    db.add(db_respondent)
    await db.flush()
    return db_respondent


async def find_completed_response(
    db: AsyncSession, survey_id: str, respondent_id: str
) -> Optional[Response]:
    result = await db.execute(
        select(Response)
        .where(
            Response.survey_id == survey_id,
            Response.respondent_id == respondent_id,
            Response.is_complete.is_(True),
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_response(
    db: AsyncSession,
    *,
    survey_id: str,
    answers: Dict[str, Any],
    respondent_id: Optional[str],
    respondent_key: Optional[str],
    submitted_at: datetime,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Response:
    db_response = Response(
        survey_id=survey_id,
        respondent_id=respondent_id,
        answers=answers,
        is_complete=True,
        submitted_at=submitted_at,
        ip_address=ip_address,
        user_agent=user_agent,
        respondent_key=respondent_key,
        created_at=submitted_at,
    )
    db.add(db_response)
    # unique (survey_id, respondent_key) violations surface here
    await db.flush()
    return db_response
