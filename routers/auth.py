import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Response, status
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from passlib.context import CryptContext
from sqlmodel import or_, select

import config
from db import SessionDep
from errors import ValidationError
from models import Role, User
from permissions import Action, authorize
from schemas import LoginData, PasswordChange, UserCreate, UserRead, envelope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(config.SESSION_SECRET, salt="session")


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int) -> str:
    """
    Store the user id in a signed token. The role is read from the
    database on every request, so a token never outlives a role change.
    """
    return serializer.dumps({"user_id": user_id})


def verify_session_token(token: str, max_age_seconds: int = config.SESSION_MAX_AGE):
    """
    Returns dict {'user_id': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except (BadSignature, SignatureExpired):
        return None


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_current_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
    authorization: Optional[str] = Header(default=None),
) -> dict:
    """
    Reads the bearer token (or the 'session' cookie), verifies it,
    looks up the user, and returns {"user": User, "role": Role}.
    Raises 401 if not logged in / invalid.
    """
    token = _bearer_token(authorization) or session_token
    if token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    data = verify_session_token(token)
    if not data:
        raise HTTPException(status_code=401, detail="Invalid or expired session")

    user = session.get(User, data["user_id"])
    if user is None:
        raise HTTPException(status_code=401, detail="User not found for this session")

    return {"user": user, "role": Role(user.role)}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


def require_action(action: Action):
    """Dependency factory: the current user, provided their role may perform ``action``."""

    def checker(current: CurrentUserRoleDep) -> dict:
        authorize(current["role"], action)
        return current

    return checker


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=config.SESSION_MAX_AGE,
    )


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(user_in: UserCreate, session: SessionDep, response: Response):
    """
    Register a new user with a hashed password and log them in.
    """
    existing = session.exec(
        select(User).where(or_(User.username == user_in.username, User.email == user_in.email))
    ).first()
    if existing:
        raise ValidationError("User with this email or username already exists")

    user = User(
        username=user_in.username,
        email=user_in.email,
        first_name=user_in.first_name,
        last_name=user_in.last_name,
        phone=user_in.phone,
        role=Role(user_in.role),
        password_hash=hash_password(user_in.password),
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Registered %s %s (%s)", user.role.value, user.id, user.username)

    token = create_session_token(user.id)
    _set_session_cookie(response, token)
    return envelope(
        "Registration successful",
        {"user": UserRead.model_validate(user), "token": token},
    )


@router.post("/login")
def login(payload: LoginData, session: SessionDep, response: Response):
    """
    Log in with email or username + password, set a signed cookie
    and return the token for clients that prefer a bearer header.
    """
    user = session.exec(
        select(User).where(
            or_(User.email == payload.email_or_username, User.username == payload.email_or_username)
        )
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    token = create_session_token(user.id)
    _set_session_cookie(response, token)
    return envelope(
        "Login successful",
        {"user": UserRead.model_validate(user), "token": token},
    )


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie("session")
    return envelope("Logged out")


@router.get("/me", response_model=UserRead)
def read_me(current: CurrentUserRoleDep):
    """
    Get info about the currently logged-in user.
    """
    return current["user"]


@router.post("/change-password")
def change_password(payload: PasswordChange, session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    if not verify_password(payload.current_password, user.password_hash):
        raise ValidationError("Current password is incorrect")

    user.password_hash = hash_password(payload.new_password)
    session.add(user)
    session.commit()
    logger.info("User %s changed password", user.id)
    return envelope("Password changed successfully")
