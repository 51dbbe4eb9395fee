"""Data retention & compliance engine — scanning, review, erasure, audit, export."""

from caretrack.compliance.audit import audit_logger
from caretrack.compliance.deletion import deletion_workflow
from caretrack.compliance.export import export_service
from caretrack.compliance.policies import policy_store
from caretrack.compliance.review import flag_review
from caretrack.compliance.scanner import retention_scanner
from caretrack.compliance.stats import stats_aggregator

__all__ = [
    "audit_logger",
    "deletion_workflow",
    "export_service",
    "flag_review",
    "policy_store",
    "retention_scanner",
    "stats_aggregator",
]
