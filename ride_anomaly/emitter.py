"""Hand findings to the alert store and broadcast the stored alerts."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from .models import Finding
from .storage import AlertBroadcaster, AlertStore, StoredAlert

ALERT_TOPIC = "/topic/alerts"

__all__ = ["ALERT_TOPIC", "AlertEmitter", "alert_payload"]


def alert_payload(alert: StoredAlert) -> Dict[str, Any]:
    finding = alert.finding
    payload: Dict[str, Any] = {
        "id": alert.alert_id,
        "type": finding.kind.value,
        "message": finding.message,
        "severity": finding.severity.value,
        "isRead": alert.is_read,
        "createdAt": alert.created_at.isoformat(),
        "rideId": finding.ride_id,
        "userId": finding.subject_id,
        "userName": finding.subject_name,
        "deviceId": finding.device_id,
        "deviceType": finding.device_type,
        "source": finding.source_detector,
        "latitude": finding.latitude,
        "longitude": finding.longitude,
    }
    if finding.confidence is not None:
        payload["confidence"] = finding.confidence
    if finding.recommendations:
        payload["recommendations"] = list(finding.recommendations)
    return payload


class AlertEmitter:
    """Persist each finding, then publish it when a broadcaster is attached.

    Broadcasting is best effort: a failed publish is logged and the stored
    alert is still returned.
    """

    def __init__(
        self,
        store: AlertStore,
        broadcaster: Optional[AlertBroadcaster] = None,
        *,
        topic: str = ALERT_TOPIC,
    ) -> None:
        self._store = store
        self._broadcaster = broadcaster
        self.topic = topic
        self._log = logging.getLogger(self.__class__.__name__)

    def emit(self, finding: Finding) -> StoredAlert:
        self._log.info(
            "Creating alert type=%s severity=%s subject=%s ride=%s",
            finding.kind.value,
            finding.severity.value,
            finding.subject_id,
            finding.ride_id,
        )
        alert = self._store.persist(finding)
        self._log.info("Alert created: %s - %s", finding.kind.value, finding.message)
        self._broadcast(alert)
        return alert

    def emit_all(self, findings: Iterable[Finding]) -> List[StoredAlert]:
        stored: List[StoredAlert] = []
        for finding in findings:
            try:
                stored.append(self.emit(finding))
            except Exception as exc:
                self._log.error(
                    "Failed to persist %s alert for subject=%s: %s",
                    finding.kind.value,
                    finding.subject_id,
                    exc,
                    exc_info=True,
                )
        return stored

    def _broadcast(self, alert: StoredAlert) -> None:
        if self._broadcaster is None:
            return
        try:
            self._broadcaster.publish(self.topic, alert_payload(alert))
        except Exception as exc:
            self._log.error(
                "Error broadcasting alert id=%s: %s", alert.alert_id, exc, exc_info=True
            )
            return
        self._log.debug("Alert id=%s broadcast to %s", alert.alert_id, self.topic)
