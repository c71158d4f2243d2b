# wolmgr/core/auth.py
"""Authentication module for the Wake-on-LAN task API.

Two kinds of static tokens are recognised:

- agent tokens (``AUTHORIZED_TOKENS__<name>``) for waking agents and other
  automation calling claim/update/notify;
- user tokens (``USER_TOKENS__<principal>``) identifying an owning principal
  for task attribution and saved devices.

Tokens are read from the X-API-Token header or an Authorization Bearer header.
"""

import hmac
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Query, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from wolmgr.core.config import config
from wolmgr.core.setup_logging import setup_default_logging
from wolmgr.models.models import Principal

# Configure logging
logger = setup_default_logging()


def _mask_token(token: Optional[str], show_start: int = 4, show_end: int = 4) -> str:
    if not token:
        return "<empty>"
    if len(token) <= show_start + show_end:
        if len(token) <= 2:
            return "***"
        return f"{token[:1]}***{token[-1:]}"
    return f"{token[:show_start]}...{token[-show_end:]}"


def _match_token(token: str, tokens: Dict[str, str]) -> Optional[str]:
    """Return the name the token is registered under (constant-time comparison)."""
    matched = None
    for token_name, token_value in tokens.items():
        if hmac.compare_digest(token.encode(), token_value.encode()):
            matched = token_name
    return matched


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# Authentication Bearer or X-API token, named as in the published security schemes
bearer_scheme = HTTPBearer(auto_error=False, scheme_name="Bearer")
api_key_header = APIKeyHeader(name="X-API-Token", auto_error=False, scheme_name="AgentToken")


def _extract_token(
    api_token: Optional[str], credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if api_token:
        # X-API-Token header priority
        return api_token
    if credentials:
        # Fallback on Authorization Bearer header
        return credentials.credentials
    return None


async def verify_openapi_token(
    token_query: Optional[str] = Query(None, alias="token"),
    api_token: Optional[str] = Depends(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """
    Verify token for OpenAPI documentation access when docs are private.

    The token can be provided in three ways (in order of priority):
    1. X-API-Token header
    2. Authorization Bearer header
    3. Query parameter ?token=xxx (only if OPENAPI_ALLOW_QUERY_TOKEN)

    Returns:
        Optional[str]: The validated token or None if docs are public

    Raises:
        HTTPException: 401 error if token is missing or invalid
    """
    if config.API_DOCS_VISIBILITY == "public":
        return None

    token = _extract_token(api_token, credentials)
    if not token and token_query and config.OPENAPI_ALLOW_QUERY_TOKEN:
        token = token_query

    if not token:
        raise _unauthorized("Missing authentication token for OpenAPI access")

    if _match_token(token, config.AUTHORIZED_TOKENS) is None:
        logger.info("Unauthorized OpenAPI access attempt with token: %s", _mask_token(token))
        raise _unauthorized("Invalid or expired token for OpenAPI access")

    return token


async def verify_token(
    api_token: Optional[str] = Depends(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """
    Verify the agent token guarding automation endpoints (claim, update, notify).

    When AGENT_AUTH_REQUIRED is false the check is skipped entirely, as in an
    anonymous single-user deployment.

    Returns:
        Optional[str]: The validated token, or None when the check is disabled

    Raises:
        HTTPException: 401 error if token is missing or invalid
    """
    if not config.AGENT_AUTH_REQUIRED:
        return None

    token = _extract_token(api_token, credentials)
    if not token:
        raise _unauthorized("Missing authentication token")

    if _match_token(token, config.AUTHORIZED_TOKENS) is None:
        logger.info("Unauthorized token attempt: %s", _mask_token(token))
        raise _unauthorized("Invalid or expired token")

    return token


async def resolve_principal(
    api_token: Optional[str] = Depends(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Principal]:
    """
    Resolve the owning principal of a request.

    - user token: the principal named by the token
    - agent token: None (unscoped automation view)
    - no token: None, or 401 when REQUIRE_USER_AUTH is set
    - unknown token: 401

    Raises:
        HTTPException: 401 error as described above
    """
    token = _extract_token(api_token, credentials)
    if not token:
        if config.REQUIRE_USER_AUTH:
            raise _unauthorized("Authentication required")
        return None

    principal_id = _match_token(token, config.USER_TOKENS)
    if principal_id is not None:
        return Principal(id=principal_id)

    if _match_token(token, config.AUTHORIZED_TOKENS) is not None:
        return None

    logger.info("Unauthorized principal token attempt: %s", _mask_token(token))
    raise _unauthorized("Invalid or expired token")


async def is_agent_request(
    api_token: Optional[str] = Depends(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> bool:
    """True when the request carries a valid agent token (never raises)."""
    token = _extract_token(api_token, credentials)
    return bool(token) and _match_token(token, config.AUTHORIZED_TOKENS) is not None


async def require_user(
    principal: Optional[Principal] = Depends(resolve_principal),
) -> Principal:
    """Require a user principal (saved devices are always per-principal)."""
    if principal is None:
        raise _unauthorized("User authentication required")
    return principal
