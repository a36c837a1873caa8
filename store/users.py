# store/users.py
import hmac
import logging
import os
from dotenv import load_dotenv
from pymongo.errors import DuplicateKeyError
from .errors import NotFound, ValidationError
from .utils import hash_password, new_id, utcnow, verify_password

load_dotenv()
ADMIN_SECRET_CODE = os.getenv("ADMIN_SECRET_CODE")

logger = logging.getLogger("store")

MIN_USERNAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2
MAX_BIO_LENGTH = 500

PUBLIC_USER_FIELDS = [
    "_id",
    "username",
    "email",
    "name",
    "bio",
    "is_admin",
    "created_at",
    "updated_at",
]


def public_user(doc):
    """Strip a user document down to the fields safe to return to clients."""
    return {k: doc.get(k) for k in PUBLIC_USER_FIELDS}


def _admin_code_matches(code):
    if not ADMIN_SECRET_CODE or not code:
        return False
    return hmac.compare_digest(code.encode("utf-8"), ADMIN_SECRET_CODE.encode("utf-8"))


async def register_user(db, payload):
    """
    Create a user account from a RegisterPayload.

    The username and email must both be unused; the unique indexes on the
    users collection back up the pre-check when two sign-ups race. The admin
    flag is only granted when ADMIN_SECRET_CODE is configured and the
    payload's admin code matches it.

    Args:
        db: Database handle
        payload (RegisterPayload): Sign-up form

    Returns:
        dict: Public user fields of the new account

    Raises:
        ValidationError: Missing or too short fields, malformed email, or
            an existing account with the same username or email
    """
    username = (payload.username or "").strip()
    email = (payload.email or "").strip().lower()
    password = payload.password or ""

    if not username or not email or not password:
        raise ValidationError("Username, email and password are required")
    if len(username) < MIN_USERNAME_LENGTH:
        raise ValidationError(
            f"Username must be at least {MIN_USERNAME_LENGTH} characters long"
        )
    if "@" not in email:
        raise ValidationError("Invalid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    if await db.users.find_one({"email": email}) or await db.users.find_one(
        {"username": username}
    ):
        raise ValidationError("User already exists")

    now = utcnow()
    doc = {
        "_id": new_id(),
        "username": username,
        "email": email,
        "password": hash_password(password),
        "name": (payload.name or "").strip() or None,
        "bio": None,
        "is_admin": _admin_code_matches(payload.admin_code),
        "created_at": now,
        "updated_at": now,
    }
    try:
        await db.users.insert_one(doc)
    except DuplicateKeyError:
        raise ValidationError("User already exists")

    logger.info(f"Registered user {doc['_id']} ({username}, admin={doc['is_admin']})")
    return public_user(doc)


async def authenticate_user(db, email, password):
    """
    Check an email/password pair.

    Returns:
        dict: Public user fields on success

    Raises:
        ValidationError: Missing fields or invalid credentials. Unknown
            email and wrong password are reported identically.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = await db.users.find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("password")):
        raise ValidationError("Invalid credentials")
    return public_user(user)


async def get_user(db, user_id):
    doc = await db.users.find_one({"_id": user_id})
    if not doc:
        raise NotFound("User not found")
    return public_user(doc)


async def update_profile(db, user_id, name=None, bio=None):
    """
    Update a user's display name and bio.

    Args:
        db: Database handle
        user_id (str): Account to update
        name (str, optional): Display name, at least 2 characters once trimmed
        bio (str, optional): Free text, at most 500 characters

    Returns:
        dict: Public user fields after the update

    Raises:
        ValidationError: Name too short or bio too long
        NotFound: Unknown user
    """
    update = {}
    if name is not None:
        name = name.strip()
        if len(name) < MIN_NAME_LENGTH:
            raise ValidationError(
                f"Name must be at least {MIN_NAME_LENGTH} characters long"
            )
        update["name"] = name
    if bio is not None:
        if len(bio) > MAX_BIO_LENGTH:
            raise ValidationError(
                f"Bio must be less than {MAX_BIO_LENGTH} characters"
            )
        update["bio"] = bio

    update["updated_at"] = utcnow()
    res = await db.users.update_one({"_id": user_id}, {"$set": update})
    if res.matched_count == 0:
        raise NotFound("User not found")
    return await get_user(db, user_id)


async def set_admin(db, user_id, is_admin):
    """Grant or revoke the admin role. Takes effect at the user's next login."""
    res = await db.users.update_one(
        {"_id": user_id}, {"$set": {"is_admin": is_admin, "updated_at": utcnow()}}
    )
    if res.matched_count == 0:
        raise NotFound("User not found")
    logger.info(f"Set admin={is_admin} for user {user_id}")
    return await get_user(db, user_id)
