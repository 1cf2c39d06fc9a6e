"""
Alert Management System for Sentinel
"""

import html
import logging
import asyncio
from typing import Dict, Any, List, Optional
from datetime import datetime, timezone, timedelta

from core import EventBus
from core.config_manager import AlertChannelConfig
from core.event_bus import ALERT_RAISED
from integrations.interfaces import INotifier
from .interfaces import IAlertSink, SecurityAlert, AlertSeverity, AlertType

logger = logging.getLogger('sentinel.monitoring.alert_manager')

SEVERITY_ICONS = {
    AlertSeverity.INFO: "ℹ️",
    AlertSeverity.WARNING: "⚠️",
    AlertSeverity.CRITICAL: "🚨",
}

SEVERITY_LOG_LEVELS = {
    AlertSeverity.INFO: logging.INFO,
    AlertSeverity.WARNING: logging.WARNING,
    AlertSeverity.CRITICAL: logging.CRITICAL,
}


class AlertManager(IAlertSink):
    """
    Alert fan-out for Sentinel.

    Every alert is retained for the retention window and delivered to each
    configured channel. Channel failures are logged and counted; they never
    propagate to the component that raised the alert.
    """

    def __init__(self, channels: List[AlertChannelConfig], notifiers: List[INotifier],
                 event_bus: Optional[EventBus] = None,
                 retention_seconds: float = 7 * 24 * 60 * 60,
                 throttle_seconds: float = 300.0,
                 max_alerts: int = 1000):
        self.channels = list(channels)
        self.event_bus = event_bus
        self._notifiers: Dict[str, INotifier] = {n.channel_type: n for n in notifiers}
        self._retention = timedelta(seconds=retention_seconds)
        self._max_alerts = max_alerts

        self._alerts: List[SecurityAlert] = []

        # Alert throttling to prevent spam
        self._alert_history: Dict[str, datetime] = {}
        self._throttle_duration = timedelta(seconds=throttle_seconds)

        self._stats = {
            'alerts_raised': 0,
            'deliveries_succeeded': 0,
            'deliveries_failed': 0,
            'alerts_throttled': 0,
            'alerts_purged': 0,
        }

        logger.info(f"AlertManager initialized with {len(self.channels)} channel(s)")

    async def raise_alert(self, alert_type: AlertType, message: str,
                          severity: AlertSeverity = AlertSeverity.INFO, **metadata) -> SecurityAlert:
        """Build, retain and deliver an alert in one call"""
        alert = SecurityAlert(alert_type=alert_type, message=message, severity=severity, metadata=metadata)
        await self.send_alert(alert)
        return alert

    async def send_alert(self, alert: SecurityAlert) -> int:
        """
        Retain an alert and deliver it to every configured channel.

        Returns:
            Number of channels that accepted the alert
        """
        self._retain(alert)
        logger.log(SEVERITY_LOG_LEVELS[alert.severity],
                   f"[{alert.severity.value.upper()}] {alert.alert_type.value}: {alert.message}")

        if self.event_bus:
            await self.event_bus.emit_async(ALERT_RAISED, source='alert_manager', alert=alert)

        alert_key = self._generate_alert_key(alert)
        if self._should_throttle_alert(alert, alert_key):
            self._stats['alerts_throttled'] += 1
            logger.debug(f"Throttling duplicate alert: {alert.alert_type.value}")
            return 0

        if not self.channels:
            return 0

        text = self._format_message(alert)
        delivered = await asyncio.gather(*(self._deliver(channel, alert, text) for channel in self.channels))
        self._alert_history[alert_key] = datetime.now(timezone.utc)

        return sum(1 for ok in delivered if ok)

    async def _deliver(self, channel: AlertChannelConfig, alert: SecurityAlert, text: str) -> bool:
        notifier = self._notifiers.get(channel.type)
        if notifier is None:
            logger.warning(f"No notifier for channel type '{channel.type}'")
            self._stats['deliveries_failed'] += 1
            return False

        try:
            if channel.type == 'webhook':
                await notifier.send(channel, alert.message, payload=alert.to_dict())
            else:
                await notifier.send(channel, text)
            self._stats['deliveries_succeeded'] += 1
            return True
        except Exception as e:
            self._stats['deliveries_failed'] += 1
            logger.error(f"Failed to deliver alert to {channel.name or channel.type}: {e}")
            return False

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Drop alerts older than the retention window"""
        now = now or datetime.now(timezone.utc)
        cutoff = now - self._retention

        kept = [alert for alert in self._alerts if alert.timestamp >= cutoff]
        purged = len(self._alerts) - len(kept)
        self._alerts = kept

        self._alert_history = {
            key: sent for key, sent in self._alert_history.items()
            if now - sent < self._throttle_duration
        }

        if purged:
            self._stats['alerts_purged'] += purged
            logger.debug(f"Purged {purged} expired alert(s)")
        return purged

    async def purge_expired_async(self) -> int:
        return self.purge_expired()

    def get_alerts(self, limit: Optional[int] = None,
                   severity: Optional[AlertSeverity] = None) -> List[SecurityAlert]:
        alerts = [a for a in self._alerts if severity is None or a.severity == severity]
        if limit:
            return alerts[-limit:]
        return alerts

    def _retain(self, alert: SecurityAlert) -> None:
        self._stats['alerts_raised'] += 1
        self._alerts.append(alert)
        if len(self._alerts) > self._max_alerts:
            self._alerts = self._alerts[-self._max_alerts:]

    def _format_message(self, alert: SecurityAlert) -> str:
        icon = SEVERITY_ICONS[alert.severity]
        return (
            f"{icon} <b>Sentinel alert</b>\n\n"
            f"<b>Type:</b> {alert.alert_type.value}\n"
            f"<b>Severity:</b> {alert.severity.value}\n"
            f"<b>Time:</b> {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}\n\n"
            f"{html.escape(alert.message)}"
        )

    def _generate_alert_key(self, alert: SecurityAlert) -> str:
        return f"{alert.alert_type.value}:{alert.severity.value}:{alert.message}"

    def _should_throttle_alert(self, alert: SecurityAlert, alert_key: str) -> bool:
        # critical alerts always go out
        if alert.severity == AlertSeverity.CRITICAL:
            return False
        last_sent = self._alert_history.get(alert_key)
        if last_sent:
            return datetime.now(timezone.utc) - last_sent < self._throttle_duration
        return False

    def get_alert_stats(self) -> Dict[str, Any]:
        return {
            **self._stats,
            'retained_alerts': len(self._alerts),
            'critical_alerts': sum(1 for a in self._alerts if a.severity == AlertSeverity.CRITICAL),
            'channels': len(self.channels),
            'throttle_duration_minutes': self._throttle_duration.total_seconds() / 60
        }
