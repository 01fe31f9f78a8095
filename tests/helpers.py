"""Settings and service wiring shared by the test modules."""

from dataclasses import dataclass

from sqlalchemy import Insert, Select, Update

from passport_engine.audit.service import AuditService
from passport_engine.auth.otp import OtpService
from passport_engine.auth.service import AuthService
from passport_engine.auth.sessions import SessionService
from passport_engine.auth.stores import SqlOtpStore, SqlRateLimiter
from passport_engine.common.config import PassportSettings
from passport_engine.evidence.service import EvidenceService
from passport_engine.identity.service import IdentityService
from passport_engine.reports.service import ReportService
from passport_engine.risk.service import RiskService
from passport_engine.trustscore.service import TrustScoreService
from passport_engine.verification.service import VerificationService
from tests.fakes import (
    FakeClock,
    FakeExtractor,
    FakeVerificationProvider,
    MemoryBlobStore,
    RecordingDispatcher,
)

SECRET_KEY = "test-secret-key-for-unit-tests"
HMAC_KEY = "test-hmac-key-for-unit-tests"
API_KEY = "test-admin-api-key"
REVIEWER_KEY = "test-reviewer-api-key"


def make_settings(**overrides) -> PassportSettings:
    defaults = {
        "db_url": "sqlite+aiosqlite://",
        "secret_key": SECRET_KEY,
        "hmac_key": HMAC_KEY,
        "api_key": API_KEY,
        "reviewer_key": REVIEWER_KEY,
        "recalc_concurrency": 1,
    }
    defaults.update(overrides)
    return PassportSettings(**defaults)


@dataclass
class Stack:
    """Every service wired together the way deps.py does it."""
    settings: PassportSettings
    clock: FakeClock
    dispatcher: RecordingDispatcher
    extractor: FakeExtractor
    blobs: MemoryBlobStore
    provider: FakeVerificationProvider
    audit: AuditService
    trustscore: TrustScoreService
    identity: IdentityService
    risk: RiskService
    verification: VerificationService
    evidence: EvidenceService
    reports: ReportService
    otp: OtpService
    sessions: SessionService
    auth: AuthService

def build_stack(settings: PassportSettings, clock: FakeClock) -> Stack:
    dispatcher = RecordingDispatcher()
    extractor = FakeExtractor()
    blobs = MemoryBlobStore()
    provider = FakeVerificationProvider()
    audit = AuditService(settings)
    trustscore = TrustScoreService(settings, clock=clock)
    identity = IdentityService(
        settings, audit_service=audit, provider=provider,
        trustscore_service=trustscore, clock=clock,
    )
    risk = RiskService(settings, identity_service=identity, audit_service=audit, clock=clock)
    verification = VerificationService(
        settings, identity, risk_service=risk, trustscore_service=trustscore,
        audit_service=audit, clock=clock,
    )
    risk.verification_service = verification
    evidence = EvidenceService(
        settings, blobs, extractor, risk_service=risk, audit_service=audit, clock=clock,
    )
    reports = ReportService(
        settings, identity, blob_store=blobs, risk_service=risk,
        audit_service=audit, clock=clock,
    )
    otp = OtpService(settings, SqlOtpStore(), SqlRateLimiter(), dispatcher, clock=clock)
    sessions = SessionService(settings, audit_service=audit, clock=clock)
    auth = AuthService(
        otp, sessions, identity, audit_service=audit,
        risk_service=risk, trustscore_service=trustscore,
    )
    return Stack(
        settings=settings, clock=clock, dispatcher=dispatcher, extractor=extractor,
        blobs=blobs, provider=provider, audit=audit, trustscore=trustscore,
        identity=identity, risk=risk, verification=verification, evidence=evidence,
        reports=reports, otp=otp, sessions=sessions, auth=auth,
    )


async def make_user(db, stack: Stack, email: str, **kwargs) -> str:
    async with db.get_session() as session:
        user, _ = await stack.identity.get_or_create(session, email, **kwargs)
        return user.id


def bearer(tokens: dict) -> dict:
    return {"Authorization": f"Bearer {tokens['access_token']}"}


def _touches(statement, table: str) -> bool:
    if isinstance(statement, (Insert, Update)):
        return statement.table.name == table
    if isinstance(statement, Select):
        return any(getattr(f, "name", None) == table for f in statement.get_final_froms())
    return False


def interleave(monkeypatch, session, table: str, competitor, kind=Update, nth=1, after=False):
    """Commit another worker's write around the ``nth`` ``kind`` statement on ``table``.

    ``competitor(execute)`` runs once, just before (or with ``after``, just
    after) that statement, and its write is committed before the service
    carries on, as if a second worker had got there first.
    """
    real_execute = session.execute
    seen = 0
    fired = False

    async def execute(statement, *args, **kwargs):
        nonlocal seen, fired
        due = False
        if not fired and isinstance(statement, kind) and _touches(statement, table):
            seen += 1
            due = seen == nth
        if due and not after:
            fired = True
            await competitor(real_execute)
            await session.commit()
        result = await real_execute(statement, *args, **kwargs)
        if due and after:
            fired = True
            await competitor(real_execute)
            await session.commit()
        return result

    monkeypatch.setattr(session, "execute", execute)
