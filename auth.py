from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from typing import Optional
import logging
import jwt
from werkzeug.security import check_password_hash, generate_password_hash

from config import get_settings
from database import get_db, User
from schemas import UserCreate, UserLogin, Token

logger = logging.getLogger(__name__)

auth_router = APIRouter()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def create_access_token(data: dict):
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.access_token_expire_minutes
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def resolve_user(token: Optional[str], db: Session) -> User:
    """Map an access token to its user, failing closed with 401."""
    invalid_session = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session"
    )
    if not token:
        raise invalid_session

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
        user_id = int(payload.get("sub"))
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Session has expired")
    except (jwt.PyJWTError, TypeError, ValueError):
        raise invalid_session

    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise invalid_session
    return user


async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme), db: Session = Depends(get_db)
):
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    return resolve_user(token, db)


def _token_for(user: User) -> Token:
    return Token(access_token=create_access_token(data={"sub": str(user.id)}))


@auth_router.post("/register", response_model=Token)
async def register(user: UserCreate, db: Session = Depends(get_db)):
    email = user.email.lower()
    db_user = db.query(User).filter(User.email == email).first()
    if db_user:
        raise HTTPException(status_code=400, detail="Email already registered")

    new_user = User(email=email, password_hash=generate_password_hash(user.password))
    db.add(new_user)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent registration took the email first.
        db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered")
    db.refresh(new_user)
    logger.info("Registered user", extra={"user_id": new_user.id})

    return _token_for(new_user)


@auth_router.post("/login", response_model=Token)
async def login(user: UserLogin, db: Session = Depends(get_db)):
    db_user = db.query(User).filter(User.email == user.email.lower()).first()
    if not db_user or not check_password_hash(db_user.password_hash, user.password):
        raise HTTPException(status_code=401, detail="Invalid credentials")

    return _token_for(db_user)
