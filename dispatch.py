import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from schemas import DeliveryStatus

logger = logging.getLogger(__name__)


class SimulatedNotifier:
    """Stands in for an SMS/push provider: logs the message and reports it as sent.

    A real provider implements the same ``send`` method and owns retries.
    """

    def send(self, user: Dict[str, Any], contact: Dict[str, Any], alert: Dict[str, Any]) -> DeliveryStatus:
        address = alert.get("location", {}).get("address") or "View map link"
        logger.info(
            "Sending SOS to %s (%s): %s has triggered an SOS alert. Location: %s",
            contact.get("name"), contact.get("phone"), user.get("name"), address,
        )
        return "sent"


def dispatch_alert(user: Optional[Dict[str, Any]], alert: Dict[str, Any],
                   notifier: Optional[SimulatedNotifier] = None,
                   now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Notify every trusted contact and return one delivery record per contact."""
    if not user:
        return []
    notifier = notifier or SimulatedNotifier()
    now = now or datetime.now(timezone.utc)

    lng, lat = alert["location"]["coordinates"]
    logger.info(
        "SOS alert triggered by %s at (%s, %s) via %s",
        user.get("name"), lat, lng, alert.get("triggerMethod"),
    )

    records = []
    for contact in user.get("trustedCircle", []):
        records.append({
            "contactName": contact.get("name"),
            "contactPhone": contact.get("phone"),
            "sentAt": now,
            "status": notifier.send(user, contact, alert),
        })
    return records
