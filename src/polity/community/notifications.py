"""
Notifications - Where governance news goes

Delivery and templating belong to the host application; LogNotifier writes
each notification as a structured log line, which is enough for the CLI and
for operators tailing logs.
"""

from typing import Any

from polity.kernel.logging import get_logger

logger = get_logger(__name__)

NOTIFICATION_KINDS = frozenset({"proposed", "passed", "rejected", "expired", "execution_failed"})


class LogNotifier:
    """Notifier that emits structured log events"""

    def notify(self, kind: str, community_id: str, details: dict[str, Any]) -> None:
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        log = logger.warning if kind == "execution_failed" else logger.info
        log(
            "Governance notification",
            kind=kind,
            community_id=community_id,
            **details,
        )
