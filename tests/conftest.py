"""Shared fixtures: a fixed clock, fresh in-memory storage, and an engine."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from orgguard.auth.capabilities import Permission, PermissionIndex
from orgguard.auth.engine import build_engine
from orgguard.auth.identity import JWTIdentityVerifier
from orgguard.auth.principal import Principal
from orgguard.config import Settings
from orgguard.core.models import OrgRole
from orgguard.storage import create_local_repository

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
JWT_SECRET = "test-secret"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        debug=False,
        jwt_secret_key=JWT_SECRET,
        membership_retry_attempts=2,
        membership_retry_backoff_seconds=0.0,
        sentry_dsn="",
        plan_limits_file="",
    )


@pytest.fixture
def repository():
    return create_local_repository()


@pytest.fixture
def index():
    return PermissionIndex()


@pytest.fixture
def engine(settings, repository, clock):
    return build_engine(
        settings,
        repository=repository,
        verifier=JWTIdentityVerifier(JWT_SECRET),
        clock=clock,
    )


@pytest.fixture
def make_principal():
    """Factory: make_principal(OrgRole.CLIENT, user_id="u", permissions=["users:invite"])."""

    def _make(
        role: OrgRole = OrgRole.TEAM_MEMBER,
        user_id: str = "user_1",
        org_id: str = "org_1",
        permissions: tuple[str, ...] = (),
    ) -> Principal:
        return Principal(
            user_id=user_id,
            org_id=org_id,
            org_role=role,
            raw_permissions=frozenset(Permission.parse(p) for p in permissions),
        )

    return _make


@pytest.fixture
def make_token():
    """Factory: a signed access token for a subject."""

    def _make(subject: str, expires_in: timedelta = timedelta(minutes=15), **claims) -> str:
        payload = {
            "sub": subject,
            "exp": datetime.now(timezone.utc) + expires_in,
            **claims,
        }
        return jwt.encode(payload, JWT_SECRET, algorithm="HS256")

    return _make
