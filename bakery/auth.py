from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import jwt
from passlib.context import CryptContext

from .config import SECRET_KEY, ALGO, ACCESS_EXPIRE_MIN, VERIFY_EMAIL_EXPIRE_MIN, BCRYPT_ROUNDS
from .database import get_db
from .models import User

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=BCRYPT_ROUNDS)
bearer = HTTPBearer(auto_error=False)

VERIFY_PURPOSE = "verify-email"


def get_password_hash(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(password: str, hash_: str) -> bool:
    return pwd_ctx.verify(password, hash_)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_EXPIRE_MIN))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGO)


def token_for(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role})


def create_verify_token(user: User) -> str:
    return create_access_token(
        {"sub": str(user.id), "email": user.email, "purpose": VERIFY_PURPOSE},
        timedelta(minutes=VERIFY_EMAIL_EXPIRE_MIN),
    )


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGO])
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")


def _user_from_token(token: str, db: Session) -> User:
    payload = decode_token(token)
    if payload.get("purpose"):
        # verification links are not session tokens
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    try:
        uid = int(payload.get("sub", "0"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = db.get(User, uid)
    if not user or user.is_deleted:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_user(cred: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                     db: Session = Depends(get_db)) -> User:
    if cred is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _user_from_token(cred.credentials, db)


def get_optional_user(cred: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                      db: Session = Depends(get_db)) -> Optional[User]:
    """Resolve the caller when a bearer token is sent; anonymous requests get ``None``."""
    if cred is None:
        return None
    return _user_from_token(cred.credentials, db)


def get_current_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
