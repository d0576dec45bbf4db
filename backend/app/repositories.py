"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
refresh tokens, clients, programs, enrollments). Repositories return
SQLModel objects and perform commits/refreshes where appropriate.
Listing queries return a `(rows, total)` pair so services can build a
page envelope without a second round of filtering logic.
"""

import uuid
from typing import Any, Dict, List, Optional, Sequence, Tuple
from sqlmodel import Session, select
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload
from . import models
from .errors import BadRequestError
from .utils.pagination import PageOptions, SortSpec


def _paginate(session: Session, model, conditions: Sequence[Any], options: PageOptions, sort: SortSpec, load: Sequence[Any] = ()) -> Tuple[List[Any], int]:
    """Run a filtered, sorted, paged select plus the matching count."""
    column = getattr(model, sort.field)
    order = column.desc() if sort.descending else column.asc()
    stmt = select(model).where(*conditions).order_by(order, model.id).offset(options.offset).limit(options.limit)
    if load:
        stmt = stmt.options(*load)
    rows = session.exec(stmt).all()
    total = session.exec(select(func.count()).select_from(model).where(*conditions)).one()
    return list(rows), int(total)


def _contains(column, term: str):
    """Case-insensitive substring match with LIKE wildcards escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return column.ilike(f"%{escaped}%", escape="\\")


class _Repository:
    model = None
    conflict_message = "Resource already exists"

    def __init__(self, session: Session):
        self.session = session

    def get(self, obj_id: uuid.UUID):
        """Fetch a row by primary key or return `None`."""
        return self.session.get(self.model, obj_id)

    def _commit(self):
        """Commit, turning a unique-constraint violation into a 400."""
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise BadRequestError(self.conflict_message)

    def create(self, obj):
        """Persist a new row and return the managed instance."""
        self.session.add(obj)
        self._commit()
        self.session.refresh(obj)
        return obj

    def update(self, obj, changes: Dict[str, Any]):
        """Apply `changes` to `obj` and commit."""
        for key, value in changes.items():
            setattr(obj, key, value)
        self.session.add(obj)
        self._commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.commit()

    def count(self) -> int:
        return int(self.session.exec(select(func.count()).select_from(self.model)).one())


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""
    model = models.User
    conflict_message = 'Email already taken'
    SORTABLE = ('name', 'email', 'role', 'created_at', 'updated_at')

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email (case-insensitive) or `None` if not found."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.lower())
        return self.session.exec(stmt).first()

    def query(self, options: PageOptions, sort: SortSpec, name: Optional[str] = None, role: Optional[models.UserRole] = None):
        conditions = []
        if name:
            conditions.append(_contains(models.User.name, name))
        if role:
            conditions.append(models.User.role == role)
        return _paginate(self.session, models.User, conditions, options, sort)


class TokenRepository(_Repository):
    """Persistence for issued refresh tokens."""
    model = models.Token

    def get_by_token(self, token: str) -> Optional[models.Token]:
        stmt = select(models.Token).where(models.Token.token == token)
        return self.session.exec(stmt).first()

    def delete_for_user(self, user_id: uuid.UUID) -> int:
        """Delete every token of `user_id`; returns the count."""
        tokens = self.session.exec(select(models.Token).where(models.Token.user_id == user_id)).all()
        for t in tokens:
            self.session.delete(t)
        self.session.commit()
        return len(tokens)


class ClientRepository(_Repository):
    """CRUD operations for `Client` records."""
    model = models.Client
    SORTABLE = ('full_name', 'dob', 'gender', 'created_at', 'updated_at')

    def get_profile(self, client_id: uuid.UUID) -> Optional[models.Client]:
        """Fetch a client with its enrollments and their programs loaded."""
        stmt = (
            select(models.Client)
            .where(models.Client.id == client_id)
            .options(selectinload(models.Client.enrollments).selectinload(models.Enrollment.program))
        )
        return self.session.exec(stmt).first()

    def exists_by_name_and_contact(self, full_name: str, contact: str, exclude_id: Optional[uuid.UUID] = None) -> bool:
        """Return True if another client has the same name/contact pair."""
        stmt = select(models.Client.id).where(
            models.Client.full_name == full_name,
            models.Client.contact == contact
        )
        if exclude_id is not None:
            stmt = stmt.where(models.Client.id != exclude_id)
        return self.session.exec(stmt).first() is not None

    def exists_for_user(self, user_id: uuid.UUID) -> bool:
        stmt = select(models.Client.id).where(models.Client.user_id == user_id)
        return self.session.exec(stmt).first() is not None

    def query(self, options: PageOptions, sort: SortSpec, search: Optional[str] = None, gender: Optional[str] = None):
        conditions = []
        if search:
            conditions.append(_contains(models.Client.full_name, search) | _contains(models.Client.contact, search))
        if gender:
            conditions.append(func.lower(models.Client.gender) == gender.lower())
        return _paginate(self.session, models.Client, conditions, options, sort)

    def recent(self, limit: int = 5) -> List[models.Client]:
        stmt = select(models.Client).order_by(models.Client.created_at.desc(), models.Client.id).limit(limit)
        return list(self.session.exec(stmt).all())


class ProgramRepository(_Repository):
    """CRUD operations for `HealthProgram` records."""
    model = models.HealthProgram
    conflict_message = 'Program name already exists'
    SORTABLE = ('name', 'created_at', 'updated_at')

    def get_by_name(self, name: str) -> Optional[models.HealthProgram]:
        stmt = select(models.HealthProgram).where(models.HealthProgram.name == name)
        return self.session.exec(stmt).first()

    def query(self, options: PageOptions, sort: SortSpec, search: Optional[str] = None):
        conditions = []
        if search:
            conditions.append(_contains(models.HealthProgram.name, search))
        return _paginate(self.session, models.HealthProgram, conditions, options, sort)


class EnrollmentRepository(_Repository):
    """CRUD operations for `Enrollment` rows and status aggregates."""
    model = models.Enrollment
    conflict_message = 'Client is already enrolled in this program'
    SORTABLE = ('enrolled_at', 'status')

    @staticmethod
    def _load():
        return (selectinload(models.Enrollment.client), selectinload(models.Enrollment.program))

    def get_detail(self, enrollment_id: uuid.UUID) -> Optional[models.Enrollment]:
        """Fetch an enrollment with its client and program loaded."""
        stmt = select(models.Enrollment).where(models.Enrollment.id == enrollment_id).options(*self._load())
        return self.session.exec(stmt).first()

    def get_by_client_and_program(self, client_id: uuid.UUID, program_id: uuid.UUID) -> Optional[models.Enrollment]:
        stmt = select(models.Enrollment).where(
            models.Enrollment.client_id == client_id,
            models.Enrollment.program_id == program_id
        )
        return self.session.exec(stmt).first()

    def query(self, options: PageOptions, sort: SortSpec, client_id: Optional[uuid.UUID] = None, program_id: Optional[uuid.UUID] = None, status: Optional[models.EnrollmentStatus] = None):
        conditions = []
        if client_id:
            conditions.append(models.Enrollment.client_id == client_id)
        if program_id:
            conditions.append(models.Enrollment.program_id == program_id)
        if status:
            conditions.append(models.Enrollment.status == status)
        return _paginate(self.session, models.Enrollment, conditions, options, sort, load=self._load())

    def count_by_status(self) -> Dict[models.EnrollmentStatus, int]:
        """Return `{status: count}` for statuses with at least one row."""
        stmt = select(models.Enrollment.status, func.count()).group_by(models.Enrollment.status)
        return {models.EnrollmentStatus(status): int(n) for status, n in self.session.exec(stmt).all()}
