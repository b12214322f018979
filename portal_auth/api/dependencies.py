"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
"""

from functools import lru_cache

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from portal_auth.adapters.repository.pools import DatabasePools
from portal_auth.adapters.smtp.console import ConsoleEmailSender
from portal_auth.config.settings import get_settings
from portal_auth.domain.auth import AuthService
from portal_auth.domain.credentials import CredentialVerifier
from portal_auth.domain.ports import EmailSender, Portal
from portal_auth.domain.regions import RegionRouter
from portal_auth.domain.tokens import TokenManager

# Module-level singleton - ConsoleEmailSender is stateless
_email_sender = ConsoleEmailSender()


def get_pools(request: Request) -> DatabasePools:
    """
    Get database pools from app state.

    The pools are created during app lifespan startup and stored in app.state.
    """
    return request.app.state.pools


def get_email_sender() -> ConsoleEmailSender:
    """Get console email sender (singleton)."""
    return _email_sender


@lru_cache
def get_credential_verifier() -> CredentialVerifier:
    """Get the bcrypt verifier; built once because it pre-hashes a dummy password."""
    return CredentialVerifier(cost=get_settings().bcrypt_cost)


def get_region_router(request: Request) -> RegionRouter:
    return get_pools(request).router()


def get_auth_service(
    portal: Portal,
    request: Request,
    email_sender: EmailSender = Depends(get_email_sender),
    credentials: CredentialVerifier = Depends(get_credential_verifier),
) -> AuthService:
    """
    Create the auth service for the portal named in the path.

    Wires together the global directory, the regional stores, the token
    manager, the credential verifier and the email sender.
    """
    settings = get_settings()
    pools = get_pools(request)
    directory = pools.directory()
    router = pools.router()
    return AuthService(
        portal=portal,
        directory=directory,
        router=router,
        tokens=TokenManager(directory=directory, router=router, policy=settings.token_policy()),
        credentials=credentials,
        email_sender=email_sender,
        default_region=settings.current_region,
    )


# Bearer security scheme for OpenAPI documentation
http_bearer = HTTPBearer(auto_error=False)


def get_session_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> str:
    """
    Extract the session token from the Authorization header.

    Returns 401 when the header is missing or is not a Bearer credential;
    the token itself is checked by the domain.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials.strip()
