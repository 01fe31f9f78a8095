"""Dependency injection singletons for Passport-Engine."""

from typing import Mapping

from passport_engine.audit.service import AuditService
from passport_engine.auth.dispatch import EmailDispatcher
from passport_engine.auth.otp import OtpService
from passport_engine.auth.service import AuthService
from passport_engine.auth.sessions import SessionService
from passport_engine.auth.stores import SqlOtpStore, SqlRateLimiter
from passport_engine.common.config import get_settings
from passport_engine.common.database import DatabaseManager
from passport_engine.common.permissions import load_capabilities
from passport_engine.evidence.blobstore import FileSystemBlobStore
from passport_engine.evidence.extractor import HttpExtractor, StructuredPayloadExtractor
from passport_engine.evidence.service import EvidenceService
from passport_engine.identity.provider import HttpVerificationProvider
from passport_engine.identity.service import IdentityService
from passport_engine.reports.service import ReportService
from passport_engine.risk.service import RiskService
from passport_engine.trustscore.service import TrustScoreService
from passport_engine.verification.service import VerificationService

_db: DatabaseManager | None = None
_capabilities: Mapping[str, frozenset[str]] | None = None
_audit: AuditService | None = None
_identity: IdentityService | None = None
_trustscore: TrustScoreService | None = None
_risk: RiskService | None = None
_verification: VerificationService | None = None
_evidence: EvidenceService | None = None
_reports: ReportService | None = None
_otp: OtpService | None = None
_sessions: SessionService | None = None
_auth: AuthService | None = None
_blob_store: FileSystemBlobStore | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_capabilities() -> Mapping[str, frozenset[str]]:
    global _capabilities
    if _capabilities is None:
        _capabilities = load_capabilities(get_settings().role_capabilities)
    return _capabilities


def get_audit_service() -> AuditService:
    global _audit
    if _audit is None:
        _audit = AuditService(get_settings())
    return _audit


def get_blob_store() -> FileSystemBlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = FileSystemBlobStore(get_settings().blob_dir)
    return _blob_store


def get_trustscore_service() -> TrustScoreService:
    global _trustscore
    if _trustscore is None:
        _trustscore = TrustScoreService(get_settings())
    return _trustscore


def get_identity_service() -> IdentityService:
    global _identity
    if _identity is None:
        settings = get_settings()
        provider = None
        if settings.identity_provider_url:
            provider = HttpVerificationProvider(
                settings.identity_provider_url, settings.identity_provider_token,
            )
        _identity = IdentityService(
            settings,
            audit_service=get_audit_service(),
            provider=provider,
            trustscore_service=get_trustscore_service(),
        )
    return _identity


def get_risk_service() -> RiskService:
    global _risk
    if _risk is None:
        _risk = RiskService(
            get_settings(),
            identity_service=get_identity_service(),
            audit_service=get_audit_service(),
        )
        # The two services reference each other.
        _risk.verification_service = get_verification_service()
    return _risk


def get_verification_service() -> VerificationService:
    global _verification
    if _verification is None:
        _verification = VerificationService(
            get_settings(),
            get_identity_service(),
            trustscore_service=get_trustscore_service(),
            audit_service=get_audit_service(),
        )
        _verification.risk_service = get_risk_service()
    return _verification


def get_evidence_service() -> EvidenceService:
    global _evidence
    if _evidence is None:
        settings = get_settings()
        if settings.extractor_url:
            extractor = HttpExtractor(settings.extractor_url, settings.extractor_token)
        else:
            extractor = StructuredPayloadExtractor()
        _evidence = EvidenceService(
            settings,
            get_blob_store(),
            extractor,
            risk_service=get_risk_service(),
            audit_service=get_audit_service(),
        )
    return _evidence


def get_report_service() -> ReportService:
    global _reports
    if _reports is None:
        _reports = ReportService(
            get_settings(),
            get_identity_service(),
            blob_store=get_blob_store(),
            risk_service=get_risk_service(),
            audit_service=get_audit_service(),
        )
    return _reports


def get_otp_service() -> OtpService:
    global _otp
    if _otp is None:
        settings = get_settings()
        _otp = OtpService(
            settings,
            SqlOtpStore(),
            SqlRateLimiter(),
            EmailDispatcher(
                provider=settings.email_provider,
                api_key=settings.email_api_key,
                from_email=settings.email_from,
                from_name=settings.email_from_name,
            ),
        )
    return _otp


def get_session_service() -> SessionService:
    global _sessions
    if _sessions is None:
        _sessions = SessionService(get_settings(), audit_service=get_audit_service())
    return _sessions


def get_auth_service() -> AuthService:
    global _auth
    if _auth is None:
        _auth = AuthService(
            get_otp_service(),
            get_session_service(),
            get_identity_service(),
            audit_service=get_audit_service(),
            risk_service=get_risk_service(),
            trustscore_service=get_trustscore_service(),
        )
    return _auth


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _capabilities, _audit, _identity, _trustscore, _risk
    global _verification, _evidence, _reports, _otp, _sessions, _auth, _blob_store
    _db = None
    _capabilities = None
    _audit = None
    _identity = None
    _trustscore = None
    _risk = None
    _verification = None
    _evidence = None
    _reports = None
    _otp = None
    _sessions = None
    _auth = None
    _blob_store = None
