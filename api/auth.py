# api/auth.py
import hashlib
import hmac
import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from dotenv import load_dotenv
from store.errors import Forbidden, Unauthenticated
from store.models import RequestContext

load_dotenv()
SECRET = os.getenv("JWT_SECRET", "dev-secret")
TOKEN_TTL = timedelta(days=int(os.getenv("TOKEN_TTL_DAYS", "7")))

bearer_scheme = HTTPBearer(auto_error=False)


def _sign(payload: str) -> str:
    return hmac.new(SECRET.encode(), payload.encode(), hashlib.sha256).hexdigest()


def make_token(user_id: str, is_admin: bool, issued_at: Optional[datetime] = None) -> str:
    """
    Issue a bearer credential for a user.

    The credential is ``user_id|admin_flag|issued_at|signature`` where the
    signature is an HMAC-SHA256 of the first three fields keyed with
    JWT_SECRET. The admin flag is frozen into the credential, so a role
    change only takes effect once the user logs in again.

    Args:
        user_id (str): Account id
        is_admin (bool): Admin flag at issuance
        issued_at (datetime, optional): Issue time, defaults to now (UTC)

    Returns:
        str: Credential to send as ``Authorization: Bearer <token>``
    """
    issued = int((issued_at or datetime.now(timezone.utc)).timestamp())
    payload = f"{user_id}|{int(bool(is_admin))}|{issued}"
    return f"{payload}|{_sign(payload)}"


def authenticate(credential: Optional[str]) -> RequestContext:
    """
    Decode and verify a bearer credential.

    Args:
        credential (str): Raw token, without the ``Bearer`` prefix

    Returns:
        RequestContext: user_id, is_admin and issued_at of the caller

    Raises:
        Unauthenticated: Credential missing, malformed, badly signed, or
            older than TOKEN_TTL
    """
    if not credential:
        raise Unauthenticated()
    try:
        user_id, admin_flag, issued, signature = credential.split("|")
        issued_at = datetime.fromtimestamp(int(issued), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        raise Unauthenticated("Token is not valid")

    payload = f"{user_id}|{admin_flag}|{issued}"
    if not user_id or admin_flag not in ("0", "1"):
        raise Unauthenticated("Token is not valid")
    if not hmac.compare_digest(_sign(payload), signature):
        raise Unauthenticated("Token is not valid")
    if issued_at + TOKEN_TTL < datetime.now(timezone.utc):
        raise Unauthenticated("Token has expired")

    return RequestContext(user_id=user_id, is_admin=admin_flag == "1", issued_at=issued_at)


def require_admin(context: RequestContext) -> RequestContext:
    if not context.is_admin:
        raise Forbidden("Access denied. Admin privileges required.")
    return context


def require_owner(context: RequestContext, owner_id: str) -> RequestContext:
    """
    Allow an operation only when the caller owns the resource.

    Raises:
        Forbidden: context.user_id differs from owner_id
    """
    if context.user_id != owner_id:
        raise Forbidden("Not authorized to modify this review")
    return context


async def get_request_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
) -> RequestContext:
    """
    FastAPI dependency resolving the caller from the Authorization header.

    Args:
        credentials: Parsed ``Authorization: Bearer <token>`` header, or None
            when the header is absent or uses another scheme

    Returns:
        RequestContext: The authenticated caller

    Raises:
        Unauthenticated: Rendered as 401 by the API error handlers
    """
    return authenticate(credentials.credentials if credentials else None)


async def get_admin_context(
    context: RequestContext = Depends(get_request_context),
) -> RequestContext:
    return require_admin(context)
