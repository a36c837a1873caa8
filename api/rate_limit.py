# api/rate_limit.py
import os
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

load_dotenv()
AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "20/minute")

limiter = Limiter(key_func=get_remote_address)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Render a 429 with the same ``message`` body as every other API error."""
    return JSONResponse(
        status_code=429,
        content={"message": f"Too many requests: {exc.detail}"},
    )


def register_rate_limit(app: FastAPI):
    """
    Register rate limiting middleware and exception handler to the FastAPI app.

    Attaches the slowapi limiter to the application state and configures a
    handler for 429 Too Many Requests responses.

    Args:
        app (FastAPI): The FastAPI application instance to configure

    Returns:
        None

    Side Effects:
        - Sets app.state.limiter to the configured limiter instance
        - Registers rate_limit_exceeded_handler for RateLimitExceeded

    Note:
        Must be called during application initialization before adding routes.
    """
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
