"""
Audit logging for the mint ledger.
Records admin changes and mint/refund outcomes next to the ledger tables.
"""
import json
import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional, Union
from enum import Enum

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of ledger events to audit."""
    # Discount tiers
    TIER_ADDED = "tier_added"
    TIER_UPDATED = "tier_updated"
    TIER_REMOVED = "tier_removed"

    # Whitelist
    WHITELIST_GRANTED = "whitelist_granted"
    WHITELIST_CLEARED = "whitelist_cleared"
    WHITELIST_PURCHASED = "whitelist_purchased"

    # Settings
    ECONOMICS_UPDATED = "economics_updated"
    TIMING_UPDATED = "timing_updated"

    # Minting
    MINT_COMMITTED = "mint_committed"
    MINT_ABORTED = "mint_aborted"
    REFUND_PROCESSED = "refund_processed"


class AuditSeverity(Enum):
    """Severity levels for audit events."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


_LOG_LEVELS = {
    AuditSeverity.INFO: logging.INFO,
    AuditSeverity.WARNING: logging.WARNING,
    AuditSeverity.CRITICAL: logging.CRITICAL,
}


def _json_default(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Cannot serialize {type(value).__name__} in audit details")


class AuditLogger:
    """Audit log stored in the ledger database."""

    def __init__(self, db_path: str = "mint_ledger.db"):
        self.db_path = db_path
        self._init_audit_table()

    def _init_audit_table(self):
        """Initialize audit log table."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS audit_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                event_type TEXT NOT NULL,
                account_id TEXT,
                details TEXT,
                severity TEXT NOT NULL,
                timestamp TEXT NOT NULL
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_account ON audit_logs(account_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_audit_event_type ON audit_logs(event_type)")

        conn.commit()
        conn.close()

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity = AuditSeverity.INFO,
        account_id: Optional[str] = None,
        details: Optional[Union[Mapping, str]] = None,
    ):
        """Log a ledger event.

        Never raises: a failed audit write is reported to the application
        logger and the caller carries on.

        Args:
            event_type: Type of event
            severity: Severity level
            account_id: Account involved, if any
            details: Event fields (stored as JSON) or a plain message
        """
        try:
            if details is not None and not isinstance(details, str):
                details = json.dumps(details, default=_json_default)

            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute(
                    "INSERT INTO audit_logs (event_type, account_id, details, severity, timestamp) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (event_type.value, account_id, details, severity.value,
                     datetime.now(timezone.utc).isoformat()),
                )
                conn.commit()
            finally:
                conn.close()

        except Exception as e:
            logger.error(f"Failed to write audit log for {event_type.value}: {e}", exc_info=True)
            return

        parts = [f"[AUDIT] {event_type.value}"]
        if account_id:
            parts.append(f"account={account_id}")
        if details:
            parts.append(details)
        logger.log(_LOG_LEVELS[severity], " | ".join(parts))

    def get_recent_events(
        self,
        limit: int = 100,
        severity: Optional[AuditSeverity] = None,
        event_type: Optional[AuditEventType] = None,
        account_id: Optional[str] = None
    ) -> list:
        """Get recent audit events, newest first.

        Args:
            limit: Maximum number of events to return
            severity: Filter by severity
            event_type: Filter by event type
            account_id: Filter by account

        Returns:
            List of audit log dictionaries
        """
        filters = [
            (column, value.value if isinstance(value, Enum) else value)
            for column, value in (("severity", severity), ("event_type", event_type), ("account_id", account_id))
            if value is not None
        ]
        where = " AND ".join(f"{column} = ?" for column, _ in filters) or "1 = 1"

        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            rows = conn.execute(
                f"SELECT * FROM audit_logs WHERE {where} ORDER BY timestamp DESC, id DESC LIMIT ?",
                [value for _, value in filters] + [limit],
            ).fetchall()
        finally:
            conn.close()

        return [dict(row) for row in rows]

    def get_summary(self, hours: int = 24) -> dict:
        """Count events of the last N hours by severity and type."""
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()

        cutoff = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()

        cursor.execute("""
            SELECT severity, COUNT(*) as count
            FROM audit_logs
            WHERE timestamp > ?
            GROUP BY severity
        """, (cutoff,))
        severity_counts = dict(cursor.fetchall())

        cursor.execute("""
            SELECT event_type, COUNT(*) as count
            FROM audit_logs
            WHERE timestamp > ?
            GROUP BY event_type
            ORDER BY count DESC
        """, (cutoff,))
        event_counts = dict(cursor.fetchall())

        conn.close()

        return {
            "period_hours": hours,
            "severity_counts": severity_counts,
            "event_counts": event_counts,
            "mints_committed": event_counts.get(AuditEventType.MINT_COMMITTED.value, 0),
            "mints_aborted": event_counts.get(AuditEventType.MINT_ABORTED.value, 0),
        }
