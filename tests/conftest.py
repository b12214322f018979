"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- Global and regional PostgreSQL pools (skipped when unreachable)
- Per-test database cleanup with an approved test domain
- A recording email sender and a low-cost credential verifier
"""

from collections.abc import Generator

import psycopg
import pytest

from portal_auth.adapters.repository.pools import DatabasePools
from portal_auth.config.settings import get_settings
from portal_auth.domain.auth import AuthService, SignupCompleted
from portal_auth.domain.credentials import CredentialVerifier
from portal_auth.domain.ports import EmailMessage, EmailTemplate, Portal, Region
from portal_auth.domain.tokens import TokenManager

APPROVED_DOMAIN = "example.com"
TEST_PASSWORD = "Str0ng!pass"


class RecordingEmailSender:
    """EmailSender that keeps every message for inspection."""

    def __init__(self) -> None:
        self.messages: list[EmailMessage] = []

    def send(self, message: EmailMessage) -> None:
        self.messages.append(message)

    def last(self, template: EmailTemplate, to: str | None = None) -> EmailMessage:
        for message in reversed(self.messages):
            if message.template is template and (to is None or message.to == to):
                return message
        raise AssertionError(f"no {template.value} email sent to {to or 'anyone'}")


def _reachable(url: str) -> bool:
    try:
        with psycopg.connect(url, connect_timeout=3):
            return True
    except psycopg.OperationalError:
        return False


@pytest.fixture(scope="session")
def database_pools() -> Generator[DatabasePools, None, None]:
    """Open and migrate every configured database once per test session."""
    settings = get_settings()
    urls = [settings.global_database_url, *settings.regional_database_urls.values()]
    if not all(_reachable(url) for url in urls):
        pytest.skip("PostgreSQL not configured")
    pools = DatabasePools.open(settings)
    pools.migrate()
    yield pools
    pools.close()


@pytest.fixture
def clean_databases(database_pools: DatabasePools) -> Generator[DatabasePools, None, None]:
    """Empty every table before each test and approve the test domain."""
    with database_pools.global_pool.connection() as conn:
        conn.execute("TRUNCATE signup_tokens, users, approved_domains")
        conn.execute(
            "INSERT INTO approved_domains (domain, status) VALUES (%s, 'active')",
            (APPROVED_DOMAIN,),
        )
        conn.commit()
    for pool in database_pools.regional_pools.values():
        with pool.connection() as conn:
            conn.execute("TRUNCATE user_credentials CASCADE")
            conn.commit()
    yield database_pools


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture(scope="session")
def credential_verifier() -> CredentialVerifier:
    # Minimum bcrypt cost keeps database-backed suites fast
    return CredentialVerifier(cost=4)


@pytest.fixture
def make_service(
    clean_databases: DatabasePools,
    email_sender: RecordingEmailSender,
    credential_verifier: CredentialVerifier,
):
    """Build an AuthService for a portal on top of the real databases."""
    settings = get_settings()

    def factory(portal: Portal = Portal.HUB) -> AuthService:
        directory = clean_databases.directory()
        router = clean_databases.router()
        return AuthService(
            portal=portal,
            directory=directory,
            router=router,
            tokens=TokenManager(directory=directory, router=router, policy=settings.token_policy()),
            credentials=credential_verifier,
            email_sender=email_sender,
            default_region=settings.current_region,
        )

    return factory


@pytest.fixture
def register_user(make_service, email_sender: RecordingEmailSender):
    """Run request_signup + complete_signup and return the completed signup."""

    def register(
        email: str,
        portal: Portal = Portal.HUB,
        home_region: Region | None = None,
        password: str = TEST_PASSWORD,
    ) -> SignupCompleted:
        service = make_service(portal)
        service.request_signup(email, home_region)
        token = email_sender.last(EmailTemplate.SIGNUP_VERIFICATION, to=email).data["signup_token"]
        return service.complete_signup(token, password, "Test User")

    return register
