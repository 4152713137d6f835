"""Audit logging package."""

from finledger.audit.logger import AuditLogger

__all__ = ["AuditLogger"]
