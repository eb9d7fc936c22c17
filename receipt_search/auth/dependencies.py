"""
FastAPI dependency functions for authentication.

Two kinds of callers reach this service:
- End users, with a Supabase Auth Bearer token (JWT Signing Keys, ES256
  verified against the project's JWKS)
- Machines: the embedding worker (X-Worker-Token) and Supabase Database
  Webhooks (X-Webhook-Secret), authenticated with shared secrets
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from jwt import PyJWKClient, decode
from jwt.exceptions import ExpiredSignatureError, InvalidTokenError, PyJWKClientError

from receipt_search.config import settings
from receipt_search.db.client import get_service_role_client
from receipt_search.services.source_service import has_role
from receipt_search.utils.constants import ADMIN_ROLE

logger = logging.getLogger(__name__)

# Initialize JWKS client for fetching and caching Supabase's public keys
# The client automatically handles caching and key rotation (cache_keys=True by default)
_jwks_client: PyJWKClient | None = None


@dataclass
class AuthenticatedUser:
    """
    Represents an authenticated user with their token.

    Attributes:
        user_id: The user's UUID from the JWT token's 'sub' claim
        access_token: The full JWT access token (for creating authenticated Supabase clients)
    """
    user_id: str
    access_token: str


def get_jwks_client() -> PyJWKClient:
    """
    Get or create the JWKS client instance.

    Returns:
        PyJWKClient: Configured JWKS client for Supabase

    Raises:
        ValueError: If SUPABASE_URL is not configured
    """
    global _jwks_client

    if _jwks_client is None:
        jwks_url = settings.SUPABASE_JWKS_URL
        if not jwks_url:
            raise ValueError(
                "SUPABASE_URL is not configured. "
                "Cannot construct JWKS URL for JWT verification."
            )

        logger.info(f"Initializing JWKS client with URL: {jwks_url}")
        _jwks_client = PyJWKClient(
            jwks_url,
            cache_keys=True,
            max_cached_keys=16,
        )

    return _jwks_client


def _unauthorized(error: str, details: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "details": details}
    )


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        logger.warning("Missing Authorization header")
        raise _unauthorized("unauthorized", "Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        logger.warning("Invalid Authorization header format")
        raise _unauthorized("unauthorized", "Invalid Authorization header format")

    return parts[1]


def _decode_user_id(token: str) -> str:
    """
    Verify a Supabase access token and return its 'sub' claim.

    Raises:
        HTTPException: 401 if the token is invalid, expired or unverifiable
    """
    try:
        signing_key = get_jwks_client().get_signing_key_from_jwt(token)

        # Supabase tokens use an issuer that includes the /auth/v1 path
        issuer = f"{settings.SUPABASE_URL.rstrip('/')}/auth/v1"

        payload = decode(
            token,
            signing_key.key,
            algorithms=["ES256"],
            audience="authenticated",
            issuer=issuer,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": True,
                "verify_iss": True,
            }
        )

    except ExpiredSignatureError:
        logger.warning("Token has expired")
        raise _unauthorized("token_expired", "Authentication token has expired")

    except PyJWKClientError as e:
        logger.error(f"JWKS client error: {str(e)}")
        raise _unauthorized("jwks_error", "Unable to verify token signature")

    except InvalidTokenError as e:
        logger.warning(f"Invalid token: {str(e)}")
        raise _unauthorized("invalid_token", "Invalid authentication token")

    except Exception as e:
        logger.error(f"Unexpected error during token verification: {str(e)}")
        raise _unauthorized("unauthorized", "Token verification failed")

    user_id = payload.get("sub")
    if not user_id:
        logger.error("Token payload missing 'sub' claim")
        raise _unauthorized("unauthorized", "Invalid token: missing user ID")

    return str(user_id)


async def get_authenticated_user(
    authorization: Annotated[str | None, Header()] = None
) -> AuthenticatedUser:
    """
    Verify the Bearer token and return the user with their token.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired

    Security:
        - This is the ONLY source of truth for user_id
        - Any user_id sent in request body is only used as a filter and is
          checked against the caller's scope
    """
    token = _extract_bearer_token(authorization)
    user_id = _decode_user_id(token)

    logger.info(f"Token verified successfully for user_id={user_id}")
    return AuthenticatedUser(user_id=user_id, access_token=token)


async def require_admin(
    auth_user: AuthenticatedUser = Depends(get_authenticated_user)
) -> AuthenticatedUser:
    """
    Allow only users holding the admin role (has_role RPC).

    Raises:
        HTTPException: 403 if the caller is not an admin
    """
    if not await has_role(get_service_role_client(), auth_user.user_id, ADMIN_ROLE):
        logger.warning(f"User {auth_user.user_id} denied access to an admin endpoint")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"error": "forbidden", "details": "Admin role required"}
        )
    return auth_user


def _secret_matches(provided: str | None, expected: str) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())


async def verify_worker_token(
    x_worker_token: Annotated[str | None, Header()] = None
) -> None:
    """
    Authenticate the embedding worker.

    Raises:
        HTTPException: 401 if the X-Worker-Token header does not match WORKER_TOKEN
    """
    if not _secret_matches(x_worker_token, settings.WORKER_TOKEN):
        logger.warning("Rejected worker request with missing or invalid X-Worker-Token")
        raise _unauthorized("unauthorized", "Invalid worker token")


async def verify_webhook_secret(
    x_webhook_secret: Annotated[str | None, Header()] = None
) -> None:
    """
    Authenticate a Supabase Database Webhook.

    Raises:
        HTTPException: 401 if the X-Webhook-Secret header does not match WEBHOOK_SECRET
    """
    if not _secret_matches(x_webhook_secret, settings.WEBHOOK_SECRET):
        logger.warning("Rejected webhook with missing or invalid X-Webhook-Secret")
        raise _unauthorized("unauthorized", "Invalid webhook secret")
