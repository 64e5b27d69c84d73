"""
Integrity audit.

``IntegrityAuditor.run()`` re-probes demand, keywords, signals, the latest
report pointer, telemetry and store writability for one category and
month, returning an :class:`IntegrityAuditReport` with a GO/NO_GO verdict.
"""

from snapshot_spine.audit.auditor import CANONICAL_REMEDIATION, IntegrityAuditor, validate_signal_docs
from snapshot_spine.audit.contract import BlockerCode, IntegrityAuditReport, IntegrityBlocker

__all__ = [
    "CANONICAL_REMEDIATION",
    "BlockerCode",
    "IntegrityAuditReport",
    "IntegrityAuditor",
    "IntegrityBlocker",
    "validate_signal_docs",
]
