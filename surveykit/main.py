import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import schemas
from .config import Settings, get_settings
from .database import create_db_and_tables, create_engine, create_session_factory
from .errors import (
    Conflict,
    Forbidden,
    InvalidInput,
    NotFound,
    StoreUnavailable,
    SurveyError,
    Unauthenticated,
)
from .identity import Identity, IdentityProvider, StaticTokenIdentityProvider, parse_bearer
from .services import ResponseCollectionService, SurveyAuthoringService

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    Unauthenticated: status.HTTP_401_UNAUTHORIZED,
    Forbidden: status.HTTP_403_FORBIDDEN,
    NotFound: status.HTTP_404_NOT_FOUND,
    InvalidInput: status.HTTP_400_BAD_REQUEST,
    Conflict: status.HTTP_409_CONFLICT,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


# --- Dependencies: caller identity and services ---


async def get_optional_identity(
    request: Request, authorization: Optional[str] = Header(None)
) -> Optional[Identity]:
    """Resolve the caller if a usable bearer token is sent, else anonymous."""
    token = parse_bearer(authorization)
    if token is None:
        return None
    return await request.app.state.identity_provider.resolve(token)


async def get_current_identity(
    request: Request, authorization: Optional[str] = Header(None)
) -> Identity:
    if authorization is None:
        raise Unauthenticated("Access denied. No token provided.")
    token = parse_bearer(authorization)
    if token is None:
        raise Unauthenticated("Invalid token format. Expected 'Bearer <token>'.")
    identity = await request.app.state.identity_provider.resolve(token)
    if identity is None:
        raise Unauthenticated("Invalid or expired token.")
    return identity


def get_authoring(request: Request) -> SurveyAuthoringService:
    return request.app.state.authoring


def get_collection(request: Request) -> ResponseCollectionService:
    return request.app.state.collection


# --- Error mapping ---


async def handle_survey_error(request: Request, exc: SurveyError) -> JSONResponse:
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    headers = None
    if isinstance(exc, Unauthenticated):
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "detail": exc.message},
        headers=headers,
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    detail = "Invalid request."
    if errors:
        first = errors[0]
        # drop the leading "body"/"query" segment
        field = ".".join(str(part) for part in first["loc"][1:])
        detail = f"Invalid value for '{field}': {first['msg']}" if field else first["msg"]
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": InvalidInput.kind, "detail": detail},
    )


# --- Survey endpoints ---

router = APIRouter(prefix="/api/surveys", tags=["surveys"])


@router.get("", response_model=List[schemas.SurveyListItem])
async def list_surveys(
    identity: Identity = Depends(get_current_identity),
    authoring: SurveyAuthoringService = Depends(get_authoring),
):
    """All surveys of the caller, newest first, with response counts."""
    return await authoring.list_owned(identity)


@router.get("/{survey_id}", response_model=schemas.SurveyView)
async def get_survey(
    survey_id: str,
    identity: Optional[Identity] = Depends(get_optional_identity),
    authoring: SurveyAuthoringService = Depends(get_authoring),
):
    return await authoring.get_for_view(identity, survey_id)


@router.post(
    "", response_model=schemas.SurveyRead, status_code=status.HTTP_201_CREATED
)
async def create_survey(
    survey_in: schemas.SurveyCreate,
    identity: Identity = Depends(get_current_identity),
    authoring: SurveyAuthoringService = Depends(get_authoring),
):
    return await authoring.create(identity, survey_in)


@router.put("/{survey_id}", response_model=schemas.SurveyRead)
async def update_survey(
    survey_id: str,
    survey_in: schemas.SurveyUpdate,
    identity: Identity = Depends(get_current_identity),
    authoring: SurveyAuthoringService = Depends(get_authoring),
):
    return await authoring.update(identity, survey_id, survey_in)


@router.patch("/{survey_id}/publish", response_model=schemas.SurveyRead)
async def publish_survey(
    survey_id: str,
    publish_in: schemas.PublishRequest,
    identity: Identity = Depends(get_current_identity),
    authoring: SurveyAuthoringService = Depends(get_authoring),
):
    return await authoring.set_published(identity, survey_id, publish_in.is_published)


@router.delete("/{survey_id}", response_model=schemas.SurveyDeleteResponse)
async def delete_survey(
    survey_id: str,
    identity: Identity = Depends(get_current_identity),
    authoring: SurveyAuthoringService = Depends(get_authoring),
):
    await authoring.delete(identity, survey_id)
    return schemas.SurveyDeleteResponse(survey_id=survey_id)


@router.post(
    "/{survey_id}/responses",
    response_model=schemas.ResponseRead,
    status_code=status.HTTP_201_CREATED,
)
async def submit_response(
    survey_id: str,
    submission: schemas.SubmissionCreate,
    request: Request,
    user_agent: Optional[str] = Header(None),
    identity: Optional[Identity] = Depends(get_optional_identity),
    collection: ResponseCollectionService = Depends(get_collection),
):
    client_meta = schemas.ClientMeta(
        ip=request.client.host if request.client else None,
        user_agent=user_agent,
    )
    return await collection.submit(
        identity,
        survey_id,
        submission.answers,
        client_meta=client_meta,
        respondent_info=submission.respondent,
    )


# --- App factory ---


def create_app(
    settings: Optional[Settings] = None,
    identity_provider: Optional[IdentityProvider] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    engine = create_engine(settings.database_url, echo=settings.database_echo)
    session_factory = create_session_factory(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting")
        if settings.create_tables:
            await create_db_and_tables(engine)
        yield
        logger.info("Application shutting down")
        await engine.dispose()

    app = FastAPI(title="Survey Kit", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.identity_provider = identity_provider or StaticTokenIdentityProvider(
        settings.api_tokens
    )
    app.state.authoring = SurveyAuthoringService(session_factory)
    app.state.collection = ResponseCollectionService(session_factory)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SurveyError, handle_survey_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.include_router(router)

    @app.get("/")
    async def read_root():
        return {"message": "Survey Kit backend is running."}

    logger.info("CORS origins: %s", settings.allowed_origins)
    return app
