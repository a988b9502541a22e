import threading
from datetime import datetime
from typing import Dict, Optional

from campaign_webhooks.webhook_monitor.types import ConfigState

# ========================================
# Monitoring Status Manager
# ========================================


def _empty_stats() -> Dict:
    return {
        "total_checks": 0,
        "total_triggered": 0,
        "campaigns_evaluated": 0,
        "campaign_errors": 0,
        "overlapping_checks_skipped": 0,
        "errors_count": 0,
        "delivery_stats": {"succeeded": 0, "failed": 0},
    }


class MonitoringStatusManager:
    """Manages monitoring system status and statistics"""

    def __init__(self):
        self.status_data = {
            **_empty_stats(),
            "last_check_time": None,
            "uptime_start": datetime.utcnow(),
        }
        self.config_states: Dict[str, ConfigState] = {}
        self._lock = threading.Lock()

    def record_check(
        self,
        triggered_count: int = 0,
        campaigns_evaluated: int = 0,
        campaign_errors: int = 0,
    ):
        """Record a completed configuration check"""
        with self._lock:
            self.status_data["total_checks"] += 1
            self.status_data["total_triggered"] += triggered_count
            self.status_data["campaigns_evaluated"] += campaigns_evaluated
            self.status_data["campaign_errors"] += campaign_errors
            self.status_data["last_check_time"] = datetime.utcnow().isoformat()

    def record_skip(self):
        """Record a configuration skipped because it was still being evaluated"""
        with self._lock:
            self.status_data["overlapping_checks_skipped"] += 1

    def record_delivery(self, success: bool):
        """Record a completed trigger delivery"""
        with self._lock:
            key = "succeeded" if success else "failed"
            self.status_data["delivery_stats"][key] += 1

    def record_error(self):
        """Record an error occurrence"""
        with self._lock:
            self.status_data["errors_count"] += 1

    def set_config_state(self, config_id: str, state: ConfigState):
        with self._lock:
            self.config_states[config_id] = state

    def get_config_state(self, config_id: str) -> Optional[ConfigState]:
        with self._lock:
            return self.config_states.get(config_id)

    def get_status(self) -> Dict:
        """Get current status snapshot"""
        with self._lock:
            current_time = datetime.utcnow()
            uptime = current_time - self.status_data["uptime_start"]

            return {
                **self.status_data,
                "delivery_stats": dict(self.status_data["delivery_stats"]),
                "uptime_start": self.status_data["uptime_start"].isoformat(),
                "uptime_seconds": int(uptime.total_seconds()),
                "uptime_formatted": str(uptime).split(".")[0],  # Remove microseconds
                "current_time": current_time.isoformat(),
                "config_states": {
                    config_id: state.value
                    for config_id, state in self.config_states.items()
                },
            }

    def get_last_check_time(self) -> Optional[str]:
        """Get the last check timestamp"""
        return self.status_data.get("last_check_time")

    def reset_stats(self):
        """Reset statistics (useful for testing)"""
        with self._lock:
            self.status_data.update(
                {**_empty_stats(), "uptime_start": datetime.utcnow()}
            )
