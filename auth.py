import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Optional

from bson import ObjectId
from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext

from database import create_document, get_db, serialize_doc
from errors import Forbidden, Unauthorized, ValidationError
from schemas import User as UserSchema

logger = logging.getLogger(__name__)

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_EXPIRE_MINUTES", 60 * 24))  # 1 day

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for_user(user: dict) -> str:
    return create_access_token({"sub": user["id"], "email": user["email"], "role": user.get("role", "user")})


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise Unauthorized("Invalid or expired token")


def public_user(user: dict) -> dict:
    return {"id": user["id"], "name": user["name"], "email": user["email"], "role": user.get("role", "user")}


# Dependency to get current user

def get_current_user(authorization: Optional[str] = Header(default=None), db=Depends(get_db)):
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthorized("Not authenticated")
    token = authorization.split(" ", 1)[1]
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id or not ObjectId.is_valid(user_id):
        raise Unauthorized("Invalid token")
    user = db["user"].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise Unauthorized("User not found")
    user = serialize_doc(user)
    user.pop("password_hash", None)
    return user


def require_admin(current_user: dict = Depends(get_current_user)):
    if current_user.get("role") != "admin":
        logger.warning("Admin route refused for user %s", current_user["id"])
        raise Forbidden("Admins only")
    return current_user


def is_owner_or_admin(user: dict, owner_id: str) -> bool:
    return user.get("role") == "admin" or user["id"] == owner_id


def register_user(db, name: str, email: str, password: str) -> dict:
    email = email.lower()
    if db["user"].find_one({"email": email}):
        raise ValidationError("User already exists")
    # role is never taken from the request
    user = UserSchema(name=name, email=email, password_hash=hash_password(password), role="user")
    user_id = create_document(db, "user", user)
    logger.info("Registered user %s", user_id)
    out = public_user({**user.model_dump(), "id": user_id})
    return {"token": token_for_user(out), "user": out}


def login_user(db, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        logger.info("Failed login for %s", email)
        raise Unauthorized("Invalid email or password")
    out = public_user(serialize_doc(user))
    return {"token": token_for_user(out), "user": out}
