"""Importing the package registers every table on Base.metadata."""
from lawnet.models.app_settings import AppSettings
from lawnet.models.audit_log import AuditLog
from lawnet.models.grant import Grant
from lawnet.models.plan_tier import PlanTier
from lawnet.models.submission import Submission

__all__ = ["AppSettings", "AuditLog", "Grant", "PlanTier", "Submission"]
