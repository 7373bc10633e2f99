from .authoring import SurveyAuthoringService
from .collection import ResponseCollectionService

__all__ = ["SurveyAuthoringService", "ResponseCollectionService"]
