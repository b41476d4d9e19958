import re
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query as SQLQuery
from sqlalchemy.orm import Session

from healthsystem.auth.dependencies import get_current_user
from healthsystem.core.envelope import Envelope, Pagination
from healthsystem.core.errors import server_error
from healthsystem.database import get_db
from healthsystem.models.user import GENDERS, USER_ROLES, User

router = APIRouter(tags=['users'])

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50


def normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError('Please provide a valid email')
    return normalized


def normalize_name(value: str) -> str:
    normalized = value.strip()
    if not MIN_NAME_LENGTH <= len(normalized) <= MAX_NAME_LENGTH:
        raise ValueError(f'Name must be between {MIN_NAME_LENGTH} and {MAX_NAME_LENGTH} characters')
    return normalized


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    specialization: str | None = None
    experience: int | None = None
    qualification: str | None = None
    bio: str | None = None
    is_active: bool = True
    last_login: datetime | None = None

    class Config:
        from_attributes = True


class UserData(BaseModel):
    user: UserResponse


class UserListData(BaseModel):
    users: list[UserResponse]
    pagination: Pagination


class DoctorListData(BaseModel):
    doctors: list[UserResponse]
    pagination: Pagination


class PatientListData(BaseModel):
    patients: list[UserResponse]
    pagination: Pagination


class UpdateUserRequest(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    date_of_birth: date | None = None
    gender: str | None = None
    specialization: str | None = None
    experience: int | None = Field(default=None, ge=0)
    qualification: str | None = None
    bio: str | None = None
    is_active: bool | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_name(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_email(value)

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in GENDERS:
            raise ValueError('Invalid gender')
        return normalized

    @field_validator('phone', 'address', 'specialization', 'qualification', 'bio')
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


def apply_search(query: SQLQuery, search: str | None, *columns) -> SQLQuery:
    if not search or not search.strip():
        return query
    pattern = f'%{search.strip()}%'
    return query.filter(or_(*(column.ilike(pattern) for column in columns)))


def paginate_users(query: SQLQuery, page: int, limit: int, *order_by) -> tuple[list[UserResponse], Pagination]:
    total = query.count()
    users = query.order_by(*order_by).offset((page - 1) * limit).limit(limit).all()
    return (
        [UserResponse.model_validate(user) for user in users],
        Pagination.build(page=page, limit=limit, total=total),
    )


def get_user_or_404(user_id: int, db: Session) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='User not found')
    return user


def can_view_profile(viewer: User, user: User) -> bool:
    if viewer.id == user.id or viewer.role == 'admin':
        return True
    # Doctor profiles are public to signed-in users; doctors can look up patients.
    return user.role == 'doctor' or viewer.role == 'doctor'


@router.get('', response_model=Envelope[UserListData])
def list_users(
    role: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role != 'admin':
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

    query = db.query(User)
    if role:
        normalized_role = role.strip().lower()
        if normalized_role not in USER_ROLES:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid role')
        query = query.filter(User.role == normalized_role)
    query = apply_search(query, search, User.name, User.email, User.phone)

    try:
        users, pagination = paginate_users(query, page, limit, User.created_at.desc(), User.id.desc())
    except SQLAlchemyError as exc:
        raise server_error('Error fetching users', exc) from exc

    return Envelope[UserListData](data=UserListData(users=users, pagination=pagination))


@router.get('/doctors', response_model=Envelope[DoctorListData])
def list_doctors(
    specialization: str | None = Query(default=None),
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    query = db.query(User).filter(User.role == 'doctor', User.is_active.is_(True))
    if specialization and specialization.strip():
        query = query.filter(func.lower(User.specialization) == specialization.strip().lower())
    query = apply_search(query, search, User.name, User.specialization)

    try:
        doctors, pagination = paginate_users(query, page, limit, User.name.asc(), User.id.asc())
    except SQLAlchemyError as exc:
        raise server_error('Failed to fetch doctors', exc) from exc

    return Envelope[DoctorListData](data=DoctorListData(doctors=doctors, pagination=pagination))


@router.get('/patients/list', response_model=Envelope[PatientListData])
def list_patients(
    search: str | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if current_user.role not in ('doctor', 'admin'):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not authorized')

    query = apply_search(db.query(User).filter(User.role == 'patient'), search, User.name, User.email, User.phone)

    try:
        patients, pagination = paginate_users(query, page, limit, User.name.asc(), User.id.asc())
    except SQLAlchemyError as exc:
        raise server_error('Error fetching patients', exc) from exc

    return Envelope[PatientListData](data=PatientListData(patients=patients, pagination=pagination))


@router.get('/{user_id}', response_model=Envelope[UserData])
def get_user(
    user_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        user = get_user_or_404(user_id, db)
    except SQLAlchemyError as exc:
        raise server_error('Error fetching user', exc) from exc

    if not can_view_profile(current_user, user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')

    return Envelope[UserData](data=UserData(user=UserResponse.model_validate(user)))


@router.put('/{user_id}', response_model=Envelope[UserData])
def update_user(
    user_id: int,
    data: UpdateUserRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        user = get_user_or_404(user_id, db)
        if current_user.id != user.id and current_user.role != 'admin':
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Not authorized to update this user')

        changes = data.model_dump(exclude_unset=True)
        if 'is_active' in changes and current_user.role != 'admin':
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Only admins can change account status',
            )
        for field in ('name', 'email', 'is_active'):
            if field in changes and changes[field] is None:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f'{field} cannot be empty')

        new_email = changes.get('email')
        if new_email and new_email != user.email:
            taken = db.query(User).filter(User.email == new_email, User.id != user.id).first()
            if taken:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email is already in use')

        for field, value in changes.items():
            setattr(user, field, value)

        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Email is already in use') from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise server_error('Error updating user', exc) from exc

    return Envelope[UserData](
        message='User updated successfully',
        data=UserData(user=UserResponse.model_validate(user)),
    )
