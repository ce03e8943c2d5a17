"""
Logging configuration for secure-context.

Provides structured JSON logging and typed audit events for the
attestation lifecycle.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from .util import mask_sensitive

# Attestation cycle currently running in this task
cycle_id_var: ContextVar[str] = ContextVar('cycle_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    One JSON object per line.

    Every line carries the attestation cycle id when one is set, so the
    collect/sign/issue records of a single cycle can be grouped.
    """

    def format(self, record: logging.LogRecord) -> str:
        created = time.gmtime(record.created)
        entry = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", created) + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.lineno}",
        }

        cycle_id = cycle_id_var.get()
        if cycle_id:
            entry["cycle_id"] = cycle_id

        entry.update(getattr(record, "audit", {}))

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class AuditLogger:
    """
    Typed audit events for the attestation lifecycle.

    Token values are masked; key material is never passed here.
    """

    def __init__(self, name: str = "secure_context.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, message: str, **fields) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(
            level,
            "%s: %s",
            event_type,
            message,
            extra={"audit": {"event_type": event_type, **fields}},
        )

    def token_request(self, site: str, context_hash: str, consistency_score: float) -> None:
        self._log(
            logging.INFO,
            "TOKEN_REQUEST",
            f"Requesting attestation token for {site}",
            site=site,
            context_hash=context_hash,
            consistency_score=consistency_score,
        )

    def token_issued(self, site: str, token: str, consistency_score: float, expires_at: float) -> None:
        self._log(
            logging.INFO,
            "TOKEN_ISSUED",
            f"Attestation token issued for {site}",
            site=site,
            token=mask_sensitive(token),
            consistency_score=consistency_score,
            expires_at=expires_at,
        )

    def verification_failed(
        self,
        context_id: str,
        kind: str,
        reason: str,
        consistency_score: Optional[float] = None
    ) -> None:
        self._log(
            logging.WARNING,
            "VERIFICATION_FAILED",
            f"Context verification failed: {reason}",
            context_id=context_id,
            failure_kind=kind,
            reason=reason,
            consistency_score=consistency_score,
        )

    def status_change(self, context_id: str, old: str, new: str) -> None:
        self._log(
            logging.DEBUG,
            "STATUS_CHANGE",
            f"{old} -> {new}",
            context_id=context_id,
            old_status=old,
            new_status=new,
        )

    def device_enrolled(self, kid: str, enrollment_url: str) -> None:
        self._log(
            logging.INFO,
            "DEVICE_ENROLLED",
            f"Enrollment artifact generated for {kid}",
            kid=kid,
            enrollment_url=enrollment_url,
        )

    def device_revoked(self, kid: str) -> None:
        self._log(
            logging.WARNING,
            "DEVICE_REVOKED",
            f"Device key {kid} revoked and erased",
            kid=kid,
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        """Log a security-relevant event; severity maps onto the log level."""
        levels = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL,
        }
        self._log(
            levels.get(severity, logging.WARNING),
            "SECURITY_EVENT",
            f"Security event: {event}",
            security_event=event,
            severity=severity,
            **details,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Install handlers on the root logger, replacing any already present.

    Logs go to stderr so that CLI output on stdout stays machine-readable.

    Args:
        level: Log level name
        json_format: One JSON object per line instead of plain text
        log_file: Also append to this file
    """
    formatter: logging.Formatter
    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def new_cycle_id(cycle_id: Optional[str] = None) -> str:
    """
    Set the attestation cycle ID for the current context.

    Returns:
        The cycle ID that was set
    """
    if cycle_id is None:
        cycle_id = uuid.uuid4().hex[:16]
    cycle_id_var.set(cycle_id)
    return cycle_id


def get_cycle_id() -> str:
    return cycle_id_var.get()


audit_log = AuditLogger()
