"""
Onboarding Kernel

Client verification and onboarding approval core:
- Registry identifier normalisation and validation results
- Versioned onboarding workflow state machine
- Single-use confirmation tokens
- Approval decisions with per-item bulk outcomes
- Hash-chained audit trail
"""

__version__ = "0.1.0"
