"""
Pytest fixtures for the onboarding test suite.

Provides:
- A file-backed SQLite database per test (or PostgreSQL via DATABASE_URL)
- Deterministic clock, stub registry clients and recording collaborators
- A fully wired OnboardingPipeline

Environment Variables:
- DATABASE_URL: Optional PostgreSQL URL. When unset every test gets its
  own SQLite file under tmp_path.
"""

import json
import logging
import os
import threading
from io import StringIO
from typing import Callable, Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from onboarding_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from onboarding_kernel.domain.clock import DeterministicClock
from onboarding_kernel.domain.identifiers import IdentifierKind, RegistryIdentifier
from onboarding_kernel.domain.validation import Address, RegistryRecord, RegistryStatus
from onboarding_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from onboarding_kernel.services.state_machine import OnboardingStateMachine
from onboarding_kernel.services.token_service import ConfirmationTokenService
from onboarding_registry.cache import ValidationCache
from onboarding_registry.client import RegistryClient
from onboarding_services.audit import SessionAuditSink
from onboarding_services.pipeline import OnboardingPipeline

COMPANY_NUMBER = "12345678"
TAX_NUMBER = "NL123456789B01"

# Test actor ID for all test operations
TEST_ACTOR_ID = UUID("7e57ac70-0000-4000-8000-000000000001")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture onboarding logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, pipeline):
            pipeline.validate_identifier("company", "12345678")
            logs = captured_logs()
            assert any(r["message"] == "registry_lookup_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("onboarding")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'onboarding.db'}"


@pytest.fixture
def session_factory(tmp_path) -> Generator[Callable[[], Session], None, None]:
    """Fresh schema per test; sessions from this factory really commit."""
    init_engine_from_url(get_database_url(tmp_path))
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    """A session for kernel-level tests. Services only flush; rolled back at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Clock and actor fixtures
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock()


# =============================================================================
# Registry fixtures
# =============================================================================


class StubRegistryClient(RegistryClient):
    """
    In-memory registry.

    Every identifier is ACTIVE unless configured otherwise: ``records``
    overrides the answer for one identifier, ``errors`` makes a lookup
    raise, ``failure`` makes every lookup raise.
    """

    def __init__(self, kind: IdentifierKind, name: str | None = None):
        self.kind = kind
        self.name = name or f"{kind.value}_registry"
        self.records: dict[str, RegistryRecord] = {}
        self.errors: dict[str, Exception] = {}
        self.failure: Exception | None = None
        self.before_fetch: Callable[[RegistryIdentifier], None] | None = None
        self.calls: list[str] = []
        self.closed = False
        self._lock = threading.Lock()

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def fetch(self, identifier: RegistryIdentifier) -> RegistryRecord:
        with self._lock:
            self.calls.append(identifier.value)
        if self.before_fetch is not None:
            self.before_fetch(identifier)
        if self.failure is not None:
            raise self.failure
        if identifier.value in self.errors:
            raise self.errors[identifier.value]
        return self.records.get(identifier.value) or RegistryRecord(
            identifier=identifier.value,
            name=f"Client {identifier.value} B.V.",
            status=RegistryStatus.ACTIVE,
            legal_form="BV",
            address=Address(street="Damrak", house_number="1", postal_code="1012LG",
                            city="Amsterdam", country="NL"),
        )

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def company_client() -> StubRegistryClient:
    return StubRegistryClient(IdentifierKind.COMPANY)


@pytest.fixture
def tax_client() -> StubRegistryClient:
    return StubRegistryClient(IdentifierKind.TAX)


@pytest.fixture
def company_cache(company_client, deterministic_clock) -> ValidationCache:
    return ValidationCache(
        company_client, deterministic_clock, ttl_seconds=900, max_batch_size=10,
    )


@pytest.fixture
def tax_cache(tax_client, deterministic_clock) -> ValidationCache:
    return ValidationCache(
        tax_client, deterministic_clock, ttl_seconds=1800, max_batch_size=5,
    )


# =============================================================================
# Collaborator fixtures
# =============================================================================


class RecordingNotifier:
    """Notifier that keeps every delivery; ``fail`` makes every call raise."""

    def __init__(self):
        self.links: list[tuple[UUID, str]] = []
        self.pending: list[tuple[UUID, UUID]] = []
        self.decisions: list[tuple[UUID, str, str | None]] = []
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise ConnectionError("mail gateway unreachable")

    def send_confirmation_link(self, client_id, token):
        self._check()
        self.links.append((client_id, token))

    def notify_pending_approval(self, client_id, approval_id):
        self._check()
        self.pending.append((client_id, approval_id))

    def send_decision_notice(self, client_id, status, message):
        self._check()
        self.decisions.append((client_id, status.value, message))

    def last_token(self, client_id: UUID) -> str:
        return [token for cid, token in self.links if cid == client_id][-1]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def audit_sink(session_factory, deterministic_clock) -> SessionAuditSink:
    return SessionAuditSink(session_factory, deterministic_clock)


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def token_service(session, deterministic_clock) -> ConfirmationTokenService:
    return ConfirmationTokenService(session, deterministic_clock)


@pytest.fixture
def state_machine(session, deterministic_clock, token_service) -> OnboardingStateMachine:
    return OnboardingStateMachine(session, deterministic_clock, token_service)


@pytest.fixture
def pipeline(
    session_factory,
    company_cache,
    tax_cache,
    deterministic_clock,
    notifier,
    audit_sink,
) -> OnboardingPipeline:
    return OnboardingPipeline(
        session_factory,
        company_cache,
        tax_cache,
        clock=deterministic_clock,
        notifier=notifier,
        audit_sink=audit_sink,
    )


@pytest.fixture
def pending_client(pipeline, notifier) -> Callable[[], UUID]:
    """Factory: a new client submitted, confirmed and awaiting approval."""

    def _make() -> UUID:
        client_id = uuid4()
        pipeline.submit_for_verification(
            client_id, {"company": COMPANY_NUMBER, "tax": TAX_NUMBER}, TEST_ACTOR_ID,
        )
        pipeline.redeem_confirmation(notifier.last_token(client_id), "198.51.100.7")
        return client_id

    return _make
