"""Run-outcome notifications: message building and delivery channels."""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage

import httpx

from src.deploy_orchestrator.config import NotificationConfig
from src.deploy_orchestrator.exceptions import ConfigurationError, NotificationError
from src.deploy_orchestrator.state import PipelineRunState
from src.deploy_shared.models import Notification, OverallStatus

logger = logging.getLogger(__name__)


def build_notification(
    state: PipelineRunState, job_name: str = "deploy", recipients: list[str] | None = None
) -> Notification:
    """Format the single notification for a finished run."""
    action = state.parameters.action.value if state.parameters else "unknown"
    success = state.overall_status is OverallStatus.SUCCEEDED
    outcome = "SUCCESS" if success else "FAILURE"
    subject = f"[{outcome}] {job_name} #{state.build_id}: {action}"

    lines = [
        f"Job: {job_name}",
        f"Build: #{state.build_id}",
        f"Action: {action}",
        f"Status: {state.overall_status.value}",
    ]
    if state.build_url:
        lines.append(f"Build URL: {state.build_url}")
    if not success:
        failed = state.failed_result
        if failed is not None:
            lines.append(f"Failed stage: {failed.stage_name}")
            if failed.error_detail:
                lines.append(f"Error: {failed.error_detail}")
        if state.interrupted:
            lines.append(f"Interrupted: {state.interrupt_reason}")
        if state.build_url:
            lines.append(f"Console output: {state.build_url.rstrip('/')}/console")
        else:
            lines.append("Console output: see the pipeline log for this run")

    return Notification(
        success=success,
        subject=subject,
        body="\n".join(lines) + "\n",
        action=action,
        build_id=state.build_id,
        build_url=state.build_url,
        recipients=list(recipients or []),
    )


class LogNotifier:
    """Writes notifications to the log (default channel)."""

    async def send(self, notification: Notification) -> None:
        level = logging.INFO if notification.success else logging.ERROR
        logger.log(level, "%s\n%s", notification.subject, notification.body)


class WebhookNotifier:
    """Posts notifications as JSON to a webhook endpoint."""

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self.url = url
        self.timeout = timeout

    async def send(self, notification: Notification) -> None:
        payload = {
            "text": notification.subject,
            "success": notification.success,
            "action": notification.action,
            "build_id": notification.build_id,
            "build_url": notification.build_url,
            "body": notification.body,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Webhook delivery failed: {exc}") from exc


class EmailNotifier:
    """Sends notifications by SMTP."""

    def __init__(self, host: str, port: int, sender: str, timeout: float = 10.0) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.timeout = timeout

    def _send_sync(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.send_message(message)

    async def send(self, notification: Notification) -> None:
        if not notification.recipients:
            raise NotificationError("Email notification has no recipients")
        message = EmailMessage()
        message["Subject"] = notification.subject
        message["From"] = self.sender
        message["To"] = ", ".join(notification.recipients)
        message.set_content(notification.body)
        try:
            await asyncio.to_thread(self._send_sync, message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Email delivery failed: {exc}") from exc


def create_notifier(config: NotificationConfig) -> LogNotifier | WebhookNotifier | EmailNotifier:
    """Create the notifier for the configured channel.

    Raises:
        ConfigurationError: If the channel is unknown or under-configured.
    """
    channel = config.channel.lower()
    if channel == "log":
        return LogNotifier()
    if channel == "webhook":
        if not config.webhook_url:
            raise ConfigurationError("notification.webhook_url is required for the webhook channel")
        return WebhookNotifier(config.webhook_url, timeout=config.timeout)
    if channel == "email":
        return EmailNotifier(config.smtp_host, config.smtp_port, config.sender, timeout=config.timeout)
    raise ConfigurationError(f"Unknown notification channel '{config.channel}'")
