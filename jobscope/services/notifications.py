"""
Failure notifications.

Fired once per failure recording with the stored job run. Delivery is a
Discord/Slack-compatible webhook post; delivery problems are logged and
never propagate to the recorder.
"""

from typing import Protocol

import httpx

from jobscope.config import AppConfig, get_config
from jobscope.core.logging import get_logger
from jobscope.models.job_run import JobRun

logger = get_logger(__name__)


class FailureNotifier(Protocol):
    async def notify_failure(self, run: JobRun) -> bool: ...


def build_failure_message(run: JobRun) -> dict:
    """Build a webhook body understood by both Discord (embeds) and Slack (text)."""
    fields: list[dict[str, str | bool]] = [
        {"name": "Job", "value": run.job_class, "inline": False},
        {"name": "Queue", "value": run.queue or "-", "inline": True},
        {"name": "Attempt", "value": str(run.attempt), "inline": True},
        {"name": "Run", "value": run.run_id, "inline": True},
    ]
    if run.duration_ms is not None:
        fields.append({"name": "Duration", "value": f"{run.duration_ms}ms", "inline": True})
    if run.tags:
        fields.append({"name": "Tags", "value": ", ".join(run.tags)[:1024], "inline": False})

    exception = run.exception_class or "Unknown exception"
    message = run.exception_message or ""

    embed = {
        "title": f":warning: Job failed: {run.job_class}"[:256],
        "description": f"**{exception}**\n{message}"[:2000],
        "color": 0xE74C3C,  # Red
        "fields": fields,
    }
    return {
        "text": f"Job failed: {run.job_class} ({exception}) {message[:500]}",
        "embeds": [embed],
    }


class WebhookFailureNotifier:
    """Posts failed job runs to a chat webhook."""

    def __init__(self, webhook_url: str, timeout_seconds: float = 10.0) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout_seconds

    async def notify_failure(self, run: JobRun) -> bool:
        """
        Send a failure message for a job run.

        Returns:
            True if the webhook accepted it, False otherwise
        """
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                resp = await client.post(self._webhook_url, json=build_failure_message(run))

                if resp.status_code not in (200, 204):
                    logger.bind(status=resp.status_code, body=resp.text[:500]).error(
                        "failure_webhook_rejected"
                    )
                    return False

                logger.bind(job_run_id=run.id).debug("failure_notification_sent")
                return True

            except httpx.TimeoutException:
                logger.error("failure_webhook_timeout")
                return False
            except Exception as e:
                logger.bind(error=str(e)).error("failure_notification_failed")
                return False


def get_failure_notifier(config: AppConfig | None = None) -> FailureNotifier | None:
    """Return the configured notifier, or None when notifications are off."""
    config = config or get_config()
    if not config.notify.enabled:
        logger.debug("failure_notifications_disabled")
        return None
    if not config.notify.webhook_url:
        logger.debug("failure_webhook_url_not_set")
        return None
    return WebhookFailureNotifier(
        config.notify.webhook_url,
        timeout_seconds=config.notify.timeout_seconds,
    )
