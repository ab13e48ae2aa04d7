"""
Onboarding services: the pipeline orchestrator and its collaborators.

Usage::

    from onboarding_config import get_active_config
    from onboarding_services import build_pipeline

    pipeline = build_pipeline(get_active_config())
    result = pipeline.submit_for_verification(
        client_id, {"company": "12345678", "tax": "NL123456789B01"},
    )
"""

from onboarding_services.audit import AuditSink, SessionAuditSink
from onboarding_services.factory import build_cache, build_pipeline
from onboarding_services.notifications import LoggingNotifier, Notifier
from onboarding_services.pipeline import SYSTEM_ACTOR_ID, OnboardingPipeline

__all__ = [
    "AuditSink",
    "LoggingNotifier",
    "Notifier",
    "OnboardingPipeline",
    "SYSTEM_ACTOR_ID",
    "SessionAuditSink",
    "build_cache",
    "build_pipeline",
]
