"""
Grafana OTLP Metrics Exporter
==============================

Pushes SLA sweep metrics to Grafana Cloud via OTLP.

Metrics exported (one gauge data point per sweep tick):
- sla_sweep_tickets_evaluated: Tickets recomputed in the tick
- sla_sweep_tickets_escalated: Tickets whose escalation level advanced
- sla_sweep_alerts_emitted: Escalation alerts stored
- sla_sweep_alert_failures: Alerts that could not be stored
- sla_sweep_errors: Tickets whose recomputation failed
- sla_sweep_timed_out: Tickets cancelled by the time budget
- sla_sweep_duration_ms: Wall-clock duration of the tick
"""

import base64
import time
from typing import Any, Dict, List, Mapping, Optional

import httpx

from src.config import settings
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


SWEEP_METRICS = {
    "tickets_evaluated": ("sla_sweep_tickets_evaluated", "1", "Tickets recomputed in the sweep"),
    "tickets_escalated": ("sla_sweep_tickets_escalated", "1", "Tickets whose escalation level advanced"),
    "alerts_emitted": ("sla_sweep_alerts_emitted", "1", "Escalation alerts stored"),
    "alert_failures": ("sla_sweep_alert_failures", "1", "Escalation alerts that could not be stored"),
    "errors": ("sla_sweep_errors", "1", "Tickets whose recomputation failed"),
    "timed_out": ("sla_sweep_timed_out", "1", "Tickets cancelled by the sweep time budget"),
    "duration_ms": ("sla_sweep_duration_ms", "ms", "Sweep duration in milliseconds"),
}


class GrafanaOTLPExporter:
    """
    Export SLA metrics to Grafana Cloud via OTLP HTTP endpoint.

    Uses OpenTelemetry Protocol (OTLP) format for metrics.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None
    ):
        """
        Initialize Grafana OTLP exporter.

        Args:
            host: Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)
            api_key: Grafana API key
            instance_id: Instance ID for authentication
        """
        self._host = host or settings.grafana_host
        self._api_key = api_key or settings.grafana_api_key
        self._instance_id = instance_id or settings.grafana_instance_id
        self._enabled = bool(self._host and self._api_key and self._instance_id)

        if self._enabled:
            auth_pair = f"{self._instance_id}:{self._api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" not in self._host:
                self._url = f"{self._host}/otlp/v1/metrics"
            else:
                self._url = self._host
            logger.info(
                "Grafana OTLP exporter initialized",
                extra={"host": self._host, "instance_id": self._instance_id}
            )
        else:
            logger.info(
                "Grafana OTLP exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(self._host),
                    "api_key_configured": bool(self._api_key),
                    "instance_id_configured": bool(self._instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    @staticmethod
    def build_payload(
        values: Mapping[str, int],
        attributes: Optional[Dict[str, str]] = None,
        timestamp_ns: Optional[int] = None
    ) -> Dict[str, Any]:
        """Build an OTLP metrics payload with one gauge per known sweep counter."""
        timestamp_ns = timestamp_ns or int(time.time() * 1_000_000_000)

        metric_attributes = [
            {"key": "service", "value": {"stringValue": settings.app_name}},
        ]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        metrics: List[Dict[str, Any]] = []
        for field_name, (name, unit, description) in SWEEP_METRICS.items():
            if field_name not in values:
                continue
            metrics.append({
                "name": name,
                "unit": unit,
                "description": description,
                "gauge": {
                    "dataPoints": [
                        {
                            "asInt": int(values[field_name]),
                            "timeUnixNano": timestamp_ns,
                            "attributes": metric_attributes
                        }
                    ]
                }
            })

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def export_sweep_metrics(
        self,
        values: Mapping[str, int],
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Export the counters of one sweep tick.

        Args:
            values: Sweep counters (SweepResult.to_dict())
            attributes: Additional attributes to attach to metrics

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            logger.debug("Grafana exporter not enabled - skipping metrics export")
            return False

        payload = self.build_payload(values, attributes)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error(
                "Error exporting metrics to Grafana",
                extra={"error": str(e)}
            )
            return False

        if response.status_code in (200, 202):
            logger.debug(
                "SLA sweep metrics exported to Grafana",
                extra={"status_code": response.status_code}
            )
            return True

        logger.warning(
            "Failed to export metrics to Grafana",
            extra={
                "status_code": response.status_code,
                "response": response.text[:500],
                "url": self._url
            }
        )
        return False


# Global exporter instance
_grafana_exporter: Optional[GrafanaOTLPExporter] = None


def get_grafana_exporter() -> Optional[GrafanaOTLPExporter]:
    """Get or create global Grafana exporter instance."""
    global _grafana_exporter
    if _grafana_exporter is None:
        _grafana_exporter = GrafanaOTLPExporter()
    return _grafana_exporter
