"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and auxiliary logic. Services are intentionally thin: they perform
existence and uniqueness checks, shape pagination/filter/sort
parameters and persist aggregates via repositories. Failures are raised
as `ApiError` subclasses carrying the HTTP status to report.
"""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from passlib.context import CryptContext
import jwt
from sqlmodel import Session
from . import models, repositories
from .config import settings
from .errors import ApiError, BadRequestError, NotFoundError, UnauthorizedError
from .schemas import ClientCreate, ClientUpdate, EnrollmentCreate, EnrollmentUpdate, ProgramCreate, ProgramUpdate, UserUpdate
from .utils.pagination import PageOptions, SortSpec, build_page, parse_sort

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
RECENT_CLIENTS = 5

logger = logging.getLogger("app.services")


def _sort(sort_by: Optional[str], allowed, default: str) -> SortSpec:
    try:
        return parse_sort(sort_by, allowed, default)
    except ValueError as e:
        raise BadRequestError(str(e))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_password(password: str) -> str:
    return PWD_CTX.hash(password)


def decode_jwt(token: str, expected_type: str) -> dict:
    """Verify signature and expiry of `token` and check its `type` claim.

    Raises `UnauthorizedError` with a short reason on failure.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise UnauthorizedError('token expired')
    except jwt.InvalidTokenError:
        raise UnauthorizedError('invalid token')
    if payload.get('type') != expected_type or not payload.get('sub'):
        raise UnauthorizedError('invalid token payload')
    return payload


class AuthService:
    """Registration, login and the access/refresh token lifecycle."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.token_repo = repositories.TokenRepository(session)

    def create_user(self, name: str, email: str, password: str) -> models.User:
        """Create a new user with a hashed password.

        Raises `BadRequestError` when the email is already registered.
        """
        if self.user_repo.get_by_email(email):
            raise BadRequestError('Email already taken')
        u = models.User(name=name, email=email.lower(), password_hash=hash_password(password))
        user = self.user_repo.create(u)
        logger.info("user_registered id=%s", user.id)
        return user

    def login_user_with_email_and_password(self, email: str, password: str) -> models.User:
        """Verify credentials and return the matching user.

        Unknown emails and wrong passwords produce the same 401 so the
        response does not reveal which accounts exist.
        """
        user = self.user_repo.get_by_email(email)
        if not user or not PWD_CTX.verify(password, user.password_hash):
            raise UnauthorizedError('Incorrect email or password')
        return user

    def _sign(self, user: models.User, token_type: str, expires: datetime) -> str:
        payload = {
            "sub": str(user.id),
            "role": models.UserRole(user.role).value,
            "type": token_type,
            "iat": datetime.now(timezone.utc),
            "exp": expires,
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

    def generate_auth_tokens(self, user: models.User) -> dict:
        """Sign an access/refresh pair for `user` and persist the refresh token."""
        now = datetime.now(timezone.utc)
        access_expires = now + timedelta(minutes=settings.JWT_ACCESS_EXPIRE_MINUTES)
        refresh_expires = now + timedelta(days=settings.JWT_REFRESH_EXPIRE_DAYS)
        access_token = self._sign(user, ACCESS_TOKEN, access_expires)
        refresh_token = self._sign(user, REFRESH_TOKEN, refresh_expires)
        self.save_token(refresh_token, user.id, refresh_expires)
        return {
            'access': {'token': access_token, 'expires': access_expires},
            'refresh': {'token': refresh_token, 'expires': refresh_expires},
        }

    def save_token(self, token: str, user_id: uuid.UUID, expires: datetime) -> models.Token:
        return self.token_repo.create(models.Token(token=token, user_id=user_id, expires_at=expires))

    def verify_token(self, token: str) -> models.Token:
        """Return the stored refresh token row or raise `UnauthorizedError`.

        The token must be stored, not past its stored expiry, and carry a
        valid signature with `type == refresh`.
        """
        token_doc = self.token_repo.get_by_token(token)
        if not token_doc or _as_utc(token_doc.expires_at) <= datetime.now(timezone.utc):
            raise UnauthorizedError('Token not found or expired')
        try:
            decode_jwt(token, REFRESH_TOKEN)
        except UnauthorizedError as e:
            raise UnauthorizedError(f'Token verification failed: {e.message}')
        return token_doc

    def refresh_auth_tokens(self, refresh_token: str) -> dict:
        """Rotate a refresh token: the old one is deleted and a new pair issued."""
        try:
            token_doc = self.verify_token(refresh_token)
            user = self.user_repo.get(token_doc.user_id)
            if not user:
                raise UnauthorizedError('User not found')
            self.token_repo.delete(token_doc)
            return self.generate_auth_tokens(user)
        except ApiError as e:
            raise UnauthorizedError(f'Authentication failed: {e.message}')

    def logout(self, refresh_token: str) -> None:
        token_doc = self.token_repo.get_by_token(refresh_token)
        if not token_doc:
            raise NotFoundError('Token not found')
        self.token_repo.delete(token_doc)
        logger.info("user_logged_out id=%s", token_doc.user_id)


class UserService:
    """Listing and maintenance of user accounts."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.token_repo = repositories.TokenRepository(session)
        self.client_repo = repositories.ClientRepository(session)

    def query_users(self, options: PageOptions, sort_by: Optional[str] = None, name: Optional[str] = None, role: Optional[models.UserRole] = None) -> dict:
        """Return a page of users filtered by name substring and/or role."""
        sort = _sort(sort_by, self.user_repo.SORTABLE, 'created_at:desc')
        rows, total = self.user_repo.query(options, sort, name=name, role=role)
        return build_page(rows, total, options)

    def get_user_by_id(self, user_id: uuid.UUID) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFoundError('User not found')
        return user

    def get_user_by_email(self, email: str) -> models.User:
        user = self.user_repo.get_by_email(email)
        if not user:
            raise NotFoundError('User not found')
        return user

    def update_user_by_id(self, user_id: uuid.UUID, body: UserUpdate) -> models.User:
        user = self.get_user_by_id(user_id)
        changes = body.model_dump(exclude_unset=True)
        if 'email' in changes:
            changes['email'] = changes['email'].lower()
            if changes['email'] != user.email:
                existing = self.user_repo.get_by_email(changes['email'])
                if existing and existing.id != user.id:
                    raise BadRequestError('Email already taken')
        if 'password' in changes:
            changes['password_hash'] = hash_password(changes.pop('password'))
        return self.user_repo.update(user, changes)

    def delete_user_by_id(self, user_id: uuid.UUID) -> None:
        """Delete a user and their refresh tokens.

        Users that registered clients are kept so client records never
        lose their owner; a 400 is raised instead.
        """
        user = self.get_user_by_id(user_id)
        if self.client_repo.exists_for_user(user.id):
            raise BadRequestError('User has registered clients')
        self.token_repo.delete_for_user(user.id)
        self.user_repo.delete(user)
        logger.info("user_deleted id=%s", user_id)


class ClientService:
    """Client registration, search, profile and statistics."""
    def __init__(self, session: Session):
        self.session = session
        self.client_repo = repositories.ClientRepository(session)
        self.program_repo = repositories.ProgramRepository(session)
        self.enrollment_repo = repositories.EnrollmentRepository(session)

    def create_client(self, data: ClientCreate, user_id: uuid.UUID) -> models.Client:
        """Register a client on behalf of `user_id`.

        A client with the same full name and contact number is treated
        as a duplicate and rejected with 400.
        """
        if self.client_repo.exists_by_name_and_contact(data.full_name, data.contact):
            raise BadRequestError('Client with this name and contact number already exists')
        client = self.client_repo.create(models.Client(**data.model_dump(), user_id=user_id))
        logger.info("client_created id=%s by=%s", client.id, user_id)
        return client

    def query_clients(self, options: PageOptions, sort_by: Optional[str] = None, search: Optional[str] = None, gender: Optional[str] = None) -> dict:
        """Return a page of clients.

        `search` matches a substring of the full name or the contact
        number, ignoring case; `gender` is an exact case-insensitive match.
        """
        sort = _sort(sort_by, self.client_repo.SORTABLE, 'created_at:desc')
        rows, total = self.client_repo.query(options, sort, search=search, gender=gender)
        return build_page(rows, total, options)

    def get_client_by_id(self, client_id: uuid.UUID) -> models.Client:
        """Return the client profile with enrollments and programs loaded."""
        client = self.client_repo.get_profile(client_id)
        if not client:
            raise NotFoundError('Client not found')
        return client

    def update_client_by_id(self, client_id: uuid.UUID, body: ClientUpdate) -> models.Client:
        client = self.client_repo.get(client_id)
        if not client:
            raise NotFoundError('Client not found')
        changes = body.model_dump(exclude_unset=True)
        if 'full_name' in changes or 'contact' in changes:
            full_name = changes.get('full_name', client.full_name)
            contact = changes.get('contact', client.contact)
            if self.client_repo.exists_by_name_and_contact(full_name, contact, exclude_id=client.id):
                raise BadRequestError('Client with this name and contact number already exists')
        return self.client_repo.update(client, changes)

    def delete_client_by_id(self, client_id: uuid.UUID) -> None:
        client = self.client_repo.get(client_id)
        if not client:
            raise NotFoundError('Client not found')
        self.client_repo.delete(client)
        logger.info("client_deleted id=%s", client_id)

    def get_statistics(self) -> dict:
        distribution = self.enrollment_repo.count_by_status()
        return {
            'client': {
                'total': self.client_repo.count(),
                'recent': self.client_repo.recent(RECENT_CLIENTS),
            },
            'programs': {'total': self.program_repo.count()},
            'enrollments': {
                'total': sum(distribution.values()),
                'distribution': {s.value: distribution.get(s, 0) for s in models.EnrollmentStatus},
            },
        }


class ProgramService:
    """CRUD for health programs; program names are unique."""
    def __init__(self, session: Session):
        self.session = session
        self.program_repo = repositories.ProgramRepository(session)

    def create_program(self, data: ProgramCreate) -> models.HealthProgram:
        if self.program_repo.get_by_name(data.name):
            raise BadRequestError('Program name already exists')
        program = self.program_repo.create(models.HealthProgram(**data.model_dump()))
        logger.info("program_created id=%s name=%s", program.id, program.name)
        return program

    def query_programs(self, options: PageOptions, sort_by: Optional[str] = None, search: Optional[str] = None) -> dict:
        sort = _sort(sort_by, self.program_repo.SORTABLE, 'created_at:desc')
        rows, total = self.program_repo.query(options, sort, search=search)
        return build_page(rows, total, options)

    def get_program_by_id(self, program_id: uuid.UUID) -> models.HealthProgram:
        program = self.program_repo.get(program_id)
        if not program:
            raise NotFoundError('Health Program not found')
        return program

    def update_program_by_id(self, program_id: uuid.UUID, body: ProgramUpdate) -> models.HealthProgram:
        program = self.get_program_by_id(program_id)
        changes = body.model_dump(exclude_unset=True)
        if changes.get('name') and changes['name'] != program.name:
            if self.program_repo.get_by_name(changes['name']):
                raise BadRequestError('Program name already exists')
        return self.program_repo.update(program, changes)

    def delete_program_by_id(self, program_id: uuid.UUID) -> None:
        program = self.get_program_by_id(program_id)
        self.program_repo.delete(program)
        logger.info("program_deleted id=%s", program_id)


class EnrollmentService:
    """Enroll clients in programs and manage enrollment status."""
    def __init__(self, session: Session):
        self.session = session
        self.enrollment_repo = repositories.EnrollmentRepository(session)
        self.client_repo = repositories.ClientRepository(session)
        self.program_repo = repositories.ProgramRepository(session)

    def create_enrollment(self, data: EnrollmentCreate) -> models.Enrollment:
        """Enroll a client in a program.

        Both sides must exist (404 otherwise) and the pair must not be
        enrolled already (400).
        """
        if not self.client_repo.get(data.client_id):
            raise NotFoundError('Client not found')
        if not self.program_repo.get(data.program_id):
            raise NotFoundError('Health Program not found')
        if self.enrollment_repo.get_by_client_and_program(data.client_id, data.program_id):
            raise BadRequestError('Client is already enrolled in this program')
        enrollment = self.enrollment_repo.create(models.Enrollment(**data.model_dump()))
        logger.info("client_enrolled client=%s program=%s", data.client_id, data.program_id)
        return enrollment

    def query_enrollments(self, options: PageOptions, sort_by: Optional[str] = None, client_id: Optional[uuid.UUID] = None, program_id: Optional[uuid.UUID] = None, status: Optional[models.EnrollmentStatus] = None) -> dict:
        """Return a page of enrollments with client and program loaded.

        Without `sort_by` the newest enrollments come first.
        """
        sort = _sort(sort_by, self.enrollment_repo.SORTABLE, 'enrolled_at:desc')
        rows, total = self.enrollment_repo.query(options, sort, client_id=client_id, program_id=program_id, status=status)
        return build_page(rows, total, options)

    def get_enrollment_by_id(self, enrollment_id: uuid.UUID) -> models.Enrollment:
        enrollment = self.enrollment_repo.get_detail(enrollment_id)
        if not enrollment:
            raise NotFoundError('Enrollment not found')
        return enrollment

    def update_enrollment_by_id(self, enrollment_id: uuid.UUID, body: EnrollmentUpdate) -> models.Enrollment:
        enrollment = self.get_enrollment_by_id(enrollment_id)
        return self.enrollment_repo.update(enrollment, body.model_dump(exclude_unset=True))

    def delete_enrollment_by_id(self, enrollment_id: uuid.UUID) -> None:
        enrollment = self.get_enrollment_by_id(enrollment_id)
        self.enrollment_repo.delete(enrollment)

    def get_enrollments_by_client_id(self, client_id: uuid.UUID, options: PageOptions, sort_by: Optional[str] = None, program_id: Optional[uuid.UUID] = None, status: Optional[models.EnrollmentStatus] = None) -> dict:
        if not self.client_repo.get(client_id):
            raise NotFoundError('Client not found')
        return self.query_enrollments(options, sort_by, client_id=client_id, program_id=program_id, status=status)
