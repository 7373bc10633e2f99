from . import crud_response, crud_survey, crud_user

__all__ = ["crud_response", "crud_survey", "crud_user"]
