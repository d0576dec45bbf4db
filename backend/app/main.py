"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the health programs backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses validated by the schemas module.

Endpoints implemented (all under /v1 except /health):
- POST /auth/register, /auth/login, /auth/refresh-tokens, /auth/logout
- GET /auth/me
- GET|PATCH|DELETE /users, /users/{user_id}
- POST|GET /clients, GET /clients/statistics
- GET|PATCH|DELETE /clients/{client_id}
- POST|GET /programs, GET|PATCH|DELETE /programs/{program_id}
- POST|GET /enrollments, GET /enrollments/client/{client_id}
- GET|PATCH|DELETE /enrollments/{enrollment_id}
"""

import json
import logging
import time
import uuid
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from .database import create_db_and_tables, get_session
from . import services, models, schemas
from .auth import get_current_user, require_admin
from .config import settings
from .errors import ForbiddenError, register_error_handlers
from .utils.pagination import MAX_OFFSET, PageOptions

app = FastAPI(title="Health Programs API")
logger = logging.getLogger("app.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

register_error_handlers(app)
create_db_and_tables()


def _request_context(request: Request, req_id: str, started: float, **extra) -> str:
    return json.dumps(
        {
            "request_id": req_id,
            "path": request.url.path,
            "method": request.method,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "client": request.client.host if request.client else "unknown",
            **extra,
        },
        ensure_ascii=True,
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("request_failed %s", _request_context(request, req_id, started))
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path != "/health":
        logger.info("request_done %s", _request_context(request, req_id, started, status_code=response.status_code))
    return response


MAX_PAGE = MAX_OFFSET // settings.MAX_PAGE_LIMIT + 1


def page_options(
    page: int = Query(1, ge=1, le=MAX_PAGE),
    limit: int = Query(settings.DEFAULT_PAGE_LIMIT, ge=1, le=settings.MAX_PAGE_LIMIT),
) -> PageOptions:
    """Shared `page`/`limit` query parameters of the listing endpoints."""
    return PageOptions(page=page, limit=limit)


def _no_content() -> Response:
    return Response(status_code=204)


# auth

@app.post('/v1/auth/register', status_code=201, response_model=schemas.AuthOut)
def register(payload: schemas.RegisterIn, db: Session = Depends(get_session)):
    """Register a new user and sign them in.

    Returns the created user and a fresh access/refresh token pair.
    """
    auth = services.AuthService(db)
    user = auth.create_user(payload.name, payload.email, payload.password)
    tokens = auth.generate_auth_tokens(user)
    return {'user': schemas.UserOut.model_validate(user), 'tokens': tokens}


@app.post('/v1/auth/login', response_model=schemas.AuthOut)
def login(payload: schemas.LoginIn, db: Session = Depends(get_session)):
    """Authenticate with email and password.

    The access token carries `sub` (user id), `role` and `type` claims and
    is signed with the configured JWT secret.
    """
    auth = services.AuthService(db)
    user = auth.login_user_with_email_and_password(payload.email, payload.password)
    tokens = auth.generate_auth_tokens(user)
    return {'user': schemas.UserOut.model_validate(user), 'tokens': tokens}


@app.post('/v1/auth/refresh-tokens', response_model=schemas.TokensOut)
def refresh_tokens(payload: schemas.RefreshIn, db: Session = Depends(get_session)):
    """Exchange a refresh token for a new pair; the old refresh token is revoked."""
    tokens = services.AuthService(db).refresh_auth_tokens(payload.refresh_token)
    return {'tokens': tokens}


@app.post('/v1/auth/logout', status_code=204)
def logout(payload: schemas.RefreshIn, db: Session = Depends(get_session)):
    services.AuthService(db).logout(payload.refresh_token)
    return _no_content()


@app.get('/v1/auth/me', response_model=schemas.UserOut)
def me(user: models.User = Depends(get_current_user)):
    return schemas.UserOut.model_validate(user)


# users

@app.get('/v1/users', response_model=schemas.Page[schemas.UserOut])
def list_users(
    name: Optional[str] = None,
    role: Optional[models.UserRole] = None,
    sort_by: Optional[str] = None,
    options: PageOptions = Depends(page_options),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """List users, optionally filtered by a name fragment and/or role."""
    page = services.UserService(db).query_users(options, sort_by, name=name, role=role)
    return schemas.Page[schemas.UserOut].model_validate(page, from_attributes=True)


@app.get('/v1/users/{user_id}', response_model=schemas.UserOut)
def get_user(user_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return schemas.UserOut.model_validate(services.UserService(db).get_user_by_id(user_id))


@app.patch('/v1/users/{user_id}', response_model=schemas.UserOut)
def update_user(user_id: uuid.UUID, payload: schemas.UserUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Update a user account.

    Users may edit their own account; admins may edit any account and are
    the only ones allowed to change a role.
    """
    is_admin = user.role == models.UserRole.ADMIN
    if user.id != user_id and not is_admin:
        raise ForbiddenError('Forbidden')
    if 'role' in payload.model_fields_set and not is_admin:
        raise ForbiddenError('Only admins can change roles')
    updated = services.UserService(db).update_user_by_id(user_id, payload)
    return schemas.UserOut.model_validate(updated)


@app.delete('/v1/users/{user_id}', status_code=204)
def delete_user(user_id: uuid.UUID, db: Session = Depends(get_session), admin: models.User = Depends(require_admin)):
    services.UserService(db).delete_user_by_id(user_id)
    return _no_content()


# clients

@app.post('/v1/clients', status_code=201, response_model=schemas.ClientOut)
def create_client(payload: schemas.ClientCreate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Register a new client on behalf of the authenticated user."""
    client = services.ClientService(db).create_client(payload, user.id)
    return schemas.ClientOut.model_validate(client)


@app.get('/v1/clients', response_model=schemas.Page[schemas.ClientOut])
def search_clients(
    search: Optional[str] = None,
    gender: Optional[str] = None,
    sort_by: Optional[str] = None,
    options: PageOptions = Depends(page_options),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Search clients by name or contact fragment, with optional gender filter."""
    page = services.ClientService(db).query_clients(options, sort_by, search=search, gender=gender)
    return schemas.Page[schemas.ClientOut].model_validate(page, from_attributes=True)


@app.get('/v1/clients/statistics', response_model=schemas.Statistics)
def client_statistics(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Dashboard counters: clients (with the most recent), programs and enrollments by status."""
    stats = services.ClientService(db).get_statistics()
    return schemas.Statistics.model_validate(stats, from_attributes=True)


@app.get('/v1/clients/{client_id}', response_model=schemas.ClientProfileOut)
def get_client_profile(client_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return a client profile including every program they are enrolled in."""
    client = services.ClientService(db).get_client_by_id(client_id)
    return schemas.ClientProfileOut.model_validate(client)


@app.patch('/v1/clients/{client_id}', response_model=schemas.ClientOut)
def update_client(client_id: uuid.UUID, payload: schemas.ClientUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    client = services.ClientService(db).update_client_by_id(client_id, payload)
    return schemas.ClientOut.model_validate(client)


@app.delete('/v1/clients/{client_id}', status_code=204)
def delete_client(client_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Delete a client together with their enrollments."""
    services.ClientService(db).delete_client_by_id(client_id)
    return _no_content()


# programs

@app.post('/v1/programs', status_code=201, response_model=schemas.ProgramOut)
def create_program(payload: schemas.ProgramCreate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    program = services.ProgramService(db).create_program(payload)
    return schemas.ProgramOut.model_validate(program)


@app.get('/v1/programs', response_model=schemas.Page[schemas.ProgramOut])
def list_programs(
    search: Optional[str] = None,
    sort_by: Optional[str] = None,
    options: PageOptions = Depends(page_options),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    page = services.ProgramService(db).query_programs(options, sort_by, search=search)
    return schemas.Page[schemas.ProgramOut].model_validate(page, from_attributes=True)


@app.get('/v1/programs/{program_id}', response_model=schemas.ProgramOut)
def get_program(program_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return schemas.ProgramOut.model_validate(services.ProgramService(db).get_program_by_id(program_id))


@app.patch('/v1/programs/{program_id}', response_model=schemas.ProgramOut)
def update_program(program_id: uuid.UUID, payload: schemas.ProgramUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    program = services.ProgramService(db).update_program_by_id(program_id, payload)
    return schemas.ProgramOut.model_validate(program)


@app.delete('/v1/programs/{program_id}', status_code=204)
def delete_program(program_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Delete a program; enrollments in it are removed as well."""
    services.ProgramService(db).delete_program_by_id(program_id)
    return _no_content()


# enrollments

@app.post('/v1/enrollments', status_code=201, response_model=schemas.EnrollmentOut)
def create_enrollment(payload: schemas.EnrollmentCreate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Enroll an existing client in an existing program."""
    enrollment = services.EnrollmentService(db).create_enrollment(payload)
    return schemas.EnrollmentOut.model_validate(enrollment)


@app.get('/v1/enrollments', response_model=schemas.Page[schemas.EnrollmentDetailOut])
def list_enrollments(
    client_id: Optional[uuid.UUID] = None,
    program_id: Optional[uuid.UUID] = None,
    status: Optional[models.EnrollmentStatus] = None,
    sort_by: Optional[str] = None,
    options: PageOptions = Depends(page_options),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    page = services.EnrollmentService(db).query_enrollments(options, sort_by, client_id=client_id, program_id=program_id, status=status)
    return schemas.Page[schemas.EnrollmentDetailOut].model_validate(page, from_attributes=True)


@app.get('/v1/enrollments/client/{client_id}', response_model=schemas.Page[schemas.EnrollmentDetailOut])
def get_client_enrollments(
    client_id: uuid.UUID,
    program_id: Optional[uuid.UUID] = None,
    status: Optional[models.EnrollmentStatus] = None,
    sort_by: Optional[str] = None,
    options: PageOptions = Depends(page_options),
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Page through the enrollments of one client (404 if the client is unknown)."""
    page = services.EnrollmentService(db).get_enrollments_by_client_id(client_id, options, sort_by, program_id=program_id, status=status)
    return schemas.Page[schemas.EnrollmentDetailOut].model_validate(page, from_attributes=True)


@app.get('/v1/enrollments/{enrollment_id}', response_model=schemas.EnrollmentDetailOut)
def get_enrollment(enrollment_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    enrollment = services.EnrollmentService(db).get_enrollment_by_id(enrollment_id)
    return schemas.EnrollmentDetailOut.model_validate(enrollment)


@app.patch('/v1/enrollments/{enrollment_id}', response_model=schemas.EnrollmentOut)
def update_enrollment(enrollment_id: uuid.UUID, payload: schemas.EnrollmentUpdate, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Change the status (active/completed/dropped) or notes of an enrollment."""
    enrollment = services.EnrollmentService(db).update_enrollment_by_id(enrollment_id, payload)
    return schemas.EnrollmentOut.model_validate(enrollment)


@app.delete('/v1/enrollments/{enrollment_id}', status_code=204)
def delete_enrollment(enrollment_id: uuid.UUID, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    services.EnrollmentService(db).delete_enrollment_by_id(enrollment_id)
    return _no_content()


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
