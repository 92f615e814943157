"""
Alert delivery: monitor log file, email (SMTP) and webhook.

Each channel is optional and independent. A failing channel is logged and
counted but never raised to the caller, so a broken mail relay cannot
abort a health cycle.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage

import requests

from fleet.config.models import AlertsConfig
from fleet.domain.types import Alert, AlertKind
from fleet.observability import ALERT_DELIVERY_FAILURES, ALERTS_TOTAL
from fleet.resilience import CircuitBreaker, CircuitOpenError

logger = logging.getLogger("fleet")
monitor_log = logging.getLogger("fleet.monitor")


class EmailChannel:
    """Sends alerts as plain-text mail through an SMTP relay."""

    name = "email"

    def __init__(self, config: AlertsConfig) -> None:
        self.config = config

    @property
    def enabled(self) -> bool:
        return bool(self.config.email)

    def deliver(self, alert: Alert) -> None:
        cfg = self.config
        msg = EmailMessage()
        msg["Subject"] = alert.subject
        msg["From"] = cfg.sender
        msg["To"] = cfg.email
        msg.set_content(alert.message)

        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=cfg.timeout) as smtp:
            if cfg.smtp_starttls:
                smtp.starttls()
            if cfg.smtp_user:
                smtp.login(cfg.smtp_user, cfg.smtp_password or "")
            smtp.send_message(msg)


class WebhookChannel:
    """Posts alerts as ``{"text": "<subject>: <message>"}`` JSON."""

    name = "webhook"

    def __init__(self, config: AlertsConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self.session = session or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.config.webhook_url)

    def deliver(self, alert: Alert) -> None:
        resp = self.session.post(
            self.config.webhook_url,
            json={"text": f"{alert.subject}: {alert.message}"},
            timeout=self.config.timeout,
        )
        resp.raise_for_status()


class AlertNotifier:
    """Fans an alert out to the log file and every configured channel."""

    def __init__(self, config: AlertsConfig, channels: list | None = None) -> None:
        self.config = config
        self.channels = channels if channels is not None else [
            EmailChannel(config),
            WebhookChannel(config),
        ]
        self._breakers = {
            channel.name: CircuitBreaker(
                f"alert_{channel.name}",
                failure_threshold=config.failure_threshold,
                recovery_timeout=config.recovery_timeout,
            )
            for channel in self.channels
        }

    def send(self, alert: Alert) -> dict[str, bool]:
        """
        Deliver an alert.

        Returns:
            Per-channel delivery outcome for the enabled channels
        """
        ALERTS_TOTAL.labels(kind=alert.kind.value).inc()
        where = f" [{alert.instance}]" if alert.instance else ""
        monitor_log.warning(f"ALERT {alert.kind.value}{where}: {alert.subject} - {alert.message}")

        results: dict[str, bool] = {}
        for channel in self.channels:
            if not channel.enabled:
                continue
            try:
                self._breakers[channel.name].call(channel.deliver, alert)
                results[channel.name] = True
            except CircuitOpenError as e:
                logger.warning(f"Skipping {channel.name} alert: {e}")
                ALERT_DELIVERY_FAILURES.labels(channel=channel.name).inc()
                results[channel.name] = False
            except Exception as e:
                logger.error(f"Failed to send {channel.name} alert: {e}")
                ALERT_DELIVERY_FAILURES.labels(channel=channel.name).inc()
                results[channel.name] = False
        return results

    def send_test(self) -> dict[str, bool]:
        """Send a test alert through every configured channel."""
        return self.send(Alert(
            kind=AlertKind.TEST,
            subject="Fleet alert test",
            message="This is a test alert from the fleet monitor.",
        ))
