# store/utils.py
import hashlib
import hmac
import os
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from bson import ObjectId
from dotenv import load_dotenv
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

load_dotenv()
PASSWORD_HASH_ITERATIONS = int(os.getenv("PASSWORD_HASH_ITERATIONS", "100000"))
HASH_ALGORITHM = "pbkdf2_sha256"


def new_id():
    """Return a fresh document id as a string."""
    return str(ObjectId())


def utcnow():
    return datetime.now(timezone.utc)


def round_rating(total, count):
    """
    Compute a mean rating rounded to one decimal place.

    The division is carried out in ``Decimal`` so that halves are rounded
    up on the decimal digit (3.25 -> 3.3, 3.666... -> 3.7) rather than
    following binary float rounding.

    Args:
        total (int): Sum of the ratings
        count (int): Number of ratings

    Returns:
        float: Mean rounded to one decimal, or 0 when count is 0

    Example:
        >>> round_rating(11, 3)
        3.7
    """
    if not count:
        return 0
    mean = Decimal(total) / Decimal(count)
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def hash_password(password, salt=None, iterations=None):
    """
    Derive a salted PBKDF2-SHA256 hash for storing a password.

    Args:
        password (str): Plain-text password
        salt (str, optional): Hex salt. A random 16-byte salt is generated
            when omitted.
        iterations (int, optional): PBKDF2 rounds. Defaults to
            PASSWORD_HASH_ITERATIONS.

    Returns:
        str: Encoded hash ``pbkdf2_sha256$<iterations>$<salt>$<digest>``
    """
    salt = salt or os.urandom(16).hex()
    iterations = iterations or PASSWORD_HASH_ITERATIONS
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt), iterations
    ).hex()
    return f"{HASH_ALGORITHM}${iterations}${salt}${digest}"


def verify_password(password, encoded):
    """
    Check a plain-text password against a hash from hash_password().

    Returns:
        bool: True on match. Malformed or empty encodings never match.
    """
    try:
        algorithm, iterations, salt, _ = (encoded or "").split("$")
        iterations = int(iterations)
    except ValueError:
        return False
    if algorithm != HASH_ALGORITHM:
        return False
    candidate = hash_password(password, salt=salt, iterations=iterations)
    return hmac.compare_digest(candidate, encoded)


def network_retry(**tenacity_kwargs):
    """
    Create a tenacity retry decorator for handling network failures.

    Returns a configured retry decorator with exponential backoff strategy,
    suitable for wrapping functions that make network requests and may
    experience transient failures.

    Args:
        **tenacity_kwargs: Optional keyword arguments
            - attempts (int): Maximum number of retry attempts. Defaults to 3.
            - exceptions (tuple): Exception types to retry on. Defaults to
              (Exception,).

    Returns:
        tenacity.Retrying: Configured retry decorator

    Retry Behavior:
        - Stops after specified number of attempts (default: 3)
        - Waits with exponential backoff: min=1s, max=10s, multiplier=1
        - Re-raises the last error once attempts are exhausted

    Example:
        @network_retry(attempts=5)
        async def fetch_data(url):
            return await client.get(url)
    """
    return retry(
        stop=stop_after_attempt(tenacity_kwargs.get("attempts", 3)),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(tenacity_kwargs.get("exceptions", (Exception,))),
        reraise=True,
    )
