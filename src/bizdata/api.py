"""FastAPI application exposing auth, business data, users and spreadsheet endpoints."""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, File, Query, Request, Response, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

from . import services
from .auth import AuthService, extract_token
from .config import Settings, get_settings
from .database import create_db_engine, create_session_factory, init_db
from .exceptions import AuthenticationError, BizDataError, ValidationError
from .models.user import User
from .policy import Action, enforce
from .schemas import (
    AuthResponse,
    CleanupResponse,
    ImportResponse,
    LoginRequest,
    MessageResponse,
    ProfileUpdate,
    RecordIn,
    RecordListResponse,
    RecordResponse,
    RecordUpdate,
    RegisterRequest,
    UserCreate,
    UserListResponse,
    UserResponse,
    UserUpdate,
)
from .spreadsheet import XLSX_MEDIA_TYPE, read_rows
from .store import RecordStore, SqlAlchemyStore

logger = logging.getLogger(__name__)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)

router = APIRouter()


async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception("error handling %s %s", request.method, request.url.path)
        raise


async def handle_service_error(request: Request, exc: BizDataError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("service error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def handle_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = f"Invalid {location}: {first.get('msg')}" if location else "Invalid request body"
    return JSONResponse(
        status_code=400,
        content={"error": message, "details": jsonable_encoder(errors)},
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# dependencies


def get_store(request: Request) -> RecordStore:
    return request.app.state.store


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_request_token(request: Request, auth: AuthService = Depends(get_auth)) -> Optional[str]:
    return extract_token(request.headers, auth.settings.auth_cookie_name)


def get_current_user(
    token: Optional[str] = Depends(get_request_token),
    auth: AuthService = Depends(get_auth),
) -> User:
    user = auth.resolve_identity(token)
    if user is None:
        raise AuthenticationError("Unauthorized")
    return user


def _set_auth_cookie(response: Response, settings: Settings, token: str) -> None:
    # readable by scripts so the browser client can reuse it as a bearer token
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        max_age=settings.session_expire_days * 24 * 60 * 60,
        httponly=False,
        secure=settings.is_production,
        samesite="lax",
    )


# auth


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest, response: Response, auth: AuthService = Depends(get_auth)
):
    """Create a regular account and start a session for it."""
    result = auth.register(payload.email or "", payload.password or "", payload.name or "")
    _set_auth_cookie(response, auth.settings, result.token)
    return {"user": result.user, "token": result.token, "message": "Registration successful"}


@router.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, response: Response, auth: AuthService = Depends(get_auth)):
    """Exchange email and password for a bearer token."""
    if not payload.email or not payload.password:
        raise ValidationError("Email and password are required")
    result = auth.login(payload.email, payload.password)
    _set_auth_cookie(response, auth.settings, result.token)
    return {"user": result.user, "token": result.token, "message": "Login successful"}


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    response: Response,
    token: Optional[str] = Depends(get_request_token),
    auth: AuthService = Depends(get_auth),
):
    if token:
        auth.logout(token)
    response.delete_cookie(
        auth.settings.auth_cookie_name,
        secure=auth.settings.is_production,
        samesite="lax",
    )
    return MessageResponse(message="Logout successful")


@router.get("/auth/me", response_model=UserResponse)
def get_profile(user: User = Depends(get_current_user)):
    return {"user": user}


@router.put("/auth/me", response_model=UserResponse)
def update_profile(
    payload: ProfileUpdate,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth),
):
    """Let the current user change their own name, email or password."""
    updated = services.update_user(
        auth,
        user,
        user.id,
        email=payload.email,
        password=payload.password,
        name=payload.name,
    )
    return {"user": updated}


# business data


@router.get("/data", response_model=RecordListResponse)
def list_data(user: User = Depends(get_current_user), store: RecordStore = Depends(get_store)):
    """Return all records for admins and the caller's own records otherwise."""
    return {"data": services.list_records(store, user)}


@router.get("/data/{record_id}", response_model=RecordResponse)
def get_data(
    record_id: str,
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    return {"data": services.get_record(store, user, record_id)}


@router.post("/data", response_model=RecordResponse, status_code=201)
def create_data(
    payload: RecordIn,
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    record = services.create_record(
        store,
        user,
        title=payload.title,
        category=payload.category,
        description=payload.description,
        value=payload.value,
        status=payload.status,
        meta=payload.metadata,
    )
    return {"data": record}


@router.put("/data", response_model=RecordResponse)
def update_data(
    payload: RecordUpdate,
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    if not payload.id:
        raise ValidationError("Data entry ID is required")
    record = services.update_record(
        store,
        user,
        payload.id,
        title=payload.title,
        category=payload.category,
        description=payload.description,
        value=payload.value,
        status=payload.status,
        meta=payload.metadata,
    )
    return {"data": record}


@router.delete("/data", response_model=MessageResponse)
def delete_data(
    record_id: Optional[str] = Query(None, alias="id"),
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    if not record_id:
        raise ValidationError("Data entry ID is required")
    services.delete_record(store, user, record_id)
    return MessageResponse(message="Data entry deleted successfully")


# users


@router.get("/users", response_model=UserListResponse)
def list_users(user: User = Depends(get_current_user), auth: AuthService = Depends(get_auth)):
    return {"users": services.list_users(auth, user)}


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth),
):
    created = services.create_user(
        auth,
        user,
        email=payload.email or "",
        password=payload.password or "",
        name=payload.name or "",
        role=payload.role,
        is_active=payload.is_active,
    )
    return {"user": created}


@router.put("/users", response_model=UserResponse)
def update_user(
    payload: UserUpdate,
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth),
):
    enforce(user, Action.MANAGE_USERS)
    if not payload.id:
        raise ValidationError("User ID is required")
    updated = services.update_user(
        auth,
        user,
        payload.id,
        email=payload.email,
        password=payload.password,
        name=payload.name,
        role=payload.role,
        is_active=payload.is_active,
    )
    return {"user": updated}


@router.delete("/users", response_model=MessageResponse)
def delete_user(
    user_id: Optional[str] = Query(None, alias="id"),
    user: User = Depends(get_current_user),
    auth: AuthService = Depends(get_auth),
):
    enforce(user, Action.MANAGE_USERS)
    if not user_id:
        raise ValidationError("User ID is required")
    services.delete_user(auth, user, user_id)
    return MessageResponse(message="User deleted successfully")


@router.delete("/sessions/expired", response_model=CleanupResponse)
def clean_sessions(user: User = Depends(get_current_user), auth: AuthService = Depends(get_auth)):
    """Purge expired sessions; admin only."""
    enforce(user, Action.CLEAN_SESSIONS)
    return CleanupResponse(removed=auth.clean_expired_sessions())


# spreadsheets


@router.get("/export")
def export(
    export_type: str = Query("data", alias="type"),
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    """Download records (or users, for admins) as an ``.xlsx`` workbook."""
    if export_type == "users":
        content = services.export_users(store, user)
        prefix = "users_export"
    elif export_type == "data":
        content = services.export_records(store, user)
        prefix = "business_data_export"
    else:
        raise ValidationError("Export type must be 'data' or 'users'")

    filename = f"{prefix}_{date.today().isoformat()}.xlsx"
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", response_model=ImportResponse)
def import_data(
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    store: RecordStore = Depends(get_store),
):
    """Create records from an uploaded ``.xlsx`` or ``.csv`` file."""
    if file is None:
        raise ValidationError("No file uploaded")
    rows = read_rows(file.file.read(), file.filename)
    result = services.import_records(store, user, rows)
    return ImportResponse(message="Import completed", results=result.as_dict())


@router.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app(
    settings: Optional[Settings] = None, store: Optional[RecordStore] = None
) -> FastAPI:
    """Build the application around an explicit configuration and store."""
    settings = settings or get_settings()
    if store is None:
        engine = create_db_engine(settings.database_url)
        init_db(engine)
        store = SqlAlchemyStore(create_session_factory(engine))

    app = FastAPI(title=settings.api_title)
    app.state.settings = settings
    app.state.store = store
    app.state.auth = AuthService(store, settings)

    app.middleware("http")(log_requests)
    app.add_exception_handler(BizDataError, handle_service_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(router)
    return app
