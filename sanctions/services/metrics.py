from __future__ import annotations

from datetime import datetime
from typing import Dict


stats: Dict = {
    "topics_scanned": 0,
    "votes_recorded": 0,
    "sanctions_proposed": 0,
    "sanctions_expired": 0,
    "notifications_sent": 0,
    "notifications_suppressed": 0,
    "last_reset": datetime.now(),
}


def reset_stats() -> None:
    for key in stats:
        if key != "last_reset":
            stats[key] = 0
    stats["last_reset"] = datetime.now()
