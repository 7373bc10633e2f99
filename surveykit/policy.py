"""Who may see and who may change a survey.

Both checks are pure: they look only at the caller and the survey row.
"""
from typing import Optional

from .identity import Identity


def can_write(identity: Optional[Identity], survey) -> bool:
    return identity is not None and identity.id == survey.creator_id


def can_read(identity: Optional[Identity], survey) -> bool:
    # unpublished surveys are visible to their creator only
    return bool(survey.is_published) or can_write(identity, survey)
