# Password hashing, signed admin session tokens and the FastAPI auth dependencies
import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timedelta, timezone

import bcrypt
from fastapi import Depends, Header, HTTPException

import config
from errors import PermissionDeniedError
from store import Repository, get_repository

logger = logging.getLogger(__name__)

PERMISSIONS = ("indicators", "recommendations", "aiAgent", "surveyManagement")


# ------------------------
# Passwords
# ------------------------
def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=config.BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


# ------------------------
# Session tokens
# ------------------------
class TokenSigner:
    """URL-safe HMAC-SHA256 signer for admin session tokens.

    token = base64url(payload) + "." + base64url(signature)
    """

    def __init__(self, secret_key, salt=""):
        self.secret_key = (secret_key or "").encode("utf-8")
        self.salt = salt or ""

    def _b64(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")

    def _unb64(self, s: str) -> bytes:
        s_bytes = s.encode("ascii")
        padding = b"=" * (-len(s_bytes) % 4)
        return base64.urlsafe_b64decode(s_bytes + padding)

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self.secret_key + self.salt.encode("utf-8"), payload, hashlib.sha256).digest()

    def dumps(self, obj) -> str:
        """Serialize and sign a JSON-serializable value."""
        payload = json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{self._b64(payload)}.{self._b64(self._sign(payload))}"

    def loads(self, token: str):
        """Verify the signature and return the payload.

        Raises:
            ValueError: If the token format or signature is invalid.
        """
        try:
            payload_b64, sig_b64 = token.rsplit(".", 1)
            payload = self._unb64(payload_b64)
            sig = self._unb64(sig_b64)
        except (ValueError, UnicodeEncodeError):
            raise ValueError("Invalid token format")
        if not hmac.compare_digest(sig, self._sign(payload)):
            raise ValueError("Invalid signature")
        return json.loads(payload.decode("utf-8"))


signer = TokenSigner(config.SECRET_KEY, salt="admin-session")


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def issue_token(user_id: str) -> str:
    exp = _now_utc() + timedelta(hours=config.SESSION_TTL_HOURS)
    return signer.dumps({"uid": user_id, "exp": int(exp.timestamp())})


def load_token(token: str) -> dict:
    """Decode a session token.

    Raises:
        ValueError: If the token is malformed, forged or expired.
    """
    data = signer.loads(token)
    exp = int(data.get("exp", 0) or 0)
    if not exp or _now_utc().timestamp() > exp:
        raise ValueError("Token expired")
    return data


# ------------------------
# Dependencies
# ------------------------
def verify_admin(x_api_key: str = Header(default="")):
    """Platform-operator key guarding cross-school endpoints."""
    if x_api_key != config.ADMIN_API_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin API key")


def current_user(authorization: str = Header(default=""), repo: Repository = Depends(get_repository)) -> dict:
    """Resolve `Authorization: Bearer <token>` to the stored admin user document."""
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Missing session token")
    try:
        data = load_token(token.strip())
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid or expired session token")
    user = repo.get_user(data.get("uid", ""))
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return user


def has_permission(user: dict, permission: str) -> bool:
    if user.get("userType", "admin") == "admin":
        return True
    return bool((user.get("permissions") or {}).get(permission))


def require_permission(permission: str):
    """Dependency factory: the current user must hold `permission`."""
    if permission not in PERMISSIONS:
        raise ValueError(f"Unknown permission: {permission}")

    def _dep(user: dict = Depends(current_user)) -> dict:
        if not has_permission(user, permission):
            logger.info("User %s denied permission %s", user.get("id"), permission)
            raise PermissionDeniedError()
        return user

    return _dep


def require_admin(user: dict = Depends(current_user)) -> dict:
    if user.get("userType", "admin") != "admin":
        raise PermissionDeniedError("Solo el administrador puede gestionar usuarios secundarios")
    return user
