from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from healthsystem.auth import jwt_handler
from healthsystem.auth.dependencies import get_current_user
from healthsystem.auth.passwords import hash_password, verify_password
from healthsystem.core.envelope import Envelope
from healthsystem.core.errors import server_error
from healthsystem.database import get_db, utcnow
from healthsystem.models.user import USER_ROLES, User
from healthsystem.routes.user_routes import UserResponse, normalize_email, normalize_name

router = APIRouter(tags=['auth'])

MIN_PASSWORD_LENGTH = 6


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str
    role: str = 'patient'
    phone: str | None = None
    specialization: str | None = None
    license_number: str | None = None
    experience: int | None = Field(default=None, ge=0)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        return normalize_name(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')
        return value

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in USER_ROLES:
            raise ValueError('Role must be patient, doctor, or admin')
        return normalized

    @field_validator('phone', 'specialization', 'license_number')
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        if not value:
            raise ValueError('Password is required')
        return value


class AuthData(BaseModel):
    user: UserResponse
    token: str


class CurrentUserData(BaseModel):
    user: UserResponse


def issue_token(user: User) -> str:
    return jwt_handler.create_access_token(subject=str(user.id), role=user.role)


@router.post('/register', response_model=Envelope[AuthData], status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    if data.role == 'doctor' and not (data.specialization and data.license_number):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Specialization and license number are required for doctors',
        )

    try:
        existing_user = db.query(User).filter(User.email == data.email).first()
        if existing_user:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='User already exists with this email',
            )

        user = User(
            name=data.name,
            email=data.email,
            hashed_password=hash_password(data.password),
            role=data.role,
            phone=data.phone,
            is_active=True,
        )
        if data.role == 'doctor':
            user.specialization = data.specialization
            user.license_number = data.license_number
            user.experience = data.experience or 0

        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='User already exists with this email',
        ) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise server_error('Registration failed', exc) from exc

    return Envelope[AuthData](
        message='User registered successfully',
        data=AuthData(user=UserResponse.model_validate(user), token=issue_token(user)),
    )


@router.post('/login', response_model=Envelope[AuthData])
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()
        if user is None or not verify_password(data.password, user.hashed_password):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Invalid credentials')

        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail='Account is deactivated')

        user.last_login = utcnow()
        db.commit()
        db.refresh(user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise server_error('Login failed', exc) from exc

    return Envelope[AuthData](
        message='Login successful',
        data=AuthData(user=UserResponse.model_validate(user), token=issue_token(user)),
    )


@router.get('/me', response_model=Envelope[CurrentUserData])
def me(current_user: User = Depends(get_current_user)):
    return Envelope[CurrentUserData](data=CurrentUserData(user=UserResponse.model_validate(current_user)))


class TokenData(BaseModel):
    token: str


@router.post('/refresh', response_model=Envelope[TokenData])
def refresh(current_user: User = Depends(get_current_user)):
    return Envelope[TokenData](message='Token refreshed successfully', data=TokenData(token=issue_token(current_user)))


@router.post('/logout', response_model=Envelope)
def logout(current_user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards its copy.
    return Envelope(message='Logout successful')
