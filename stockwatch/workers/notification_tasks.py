"""Notification delivery worker.

Architecture notes:
- The dispatch cycle runs inside the API process; only outbound webhook
  delivery is handed to Celery so a slow or failing webhook never holds up a
  check.
- Each invocation uses asyncio.run() with its own httpx client.
- Network-level errors and non-2xx responses are retried up to
  NOTIFICATION_MAX_RETRIES times. Once retries are exhausted, or on any other
  error, the alert is written to the log instead.
"""

import asyncio
import logging

import httpx
from celery.exceptions import SoftTimeLimitExceeded

from stockwatch.config import NOTIFICATION_MAX_RETRIES, NOTIFICATION_RETRY_DELAY, settings
from stockwatch.services.notification_service import (
    build_discord_payload,
    log_stock_alert,
    post_discord_alert,
)
from stockwatch.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="stockwatch.workers.notification_tasks.deliver_stock_alert",
    bind=True,
    max_retries=NOTIFICATION_MAX_RETRIES,
    default_retry_delay=NOTIFICATION_RETRY_DELAY,
    soft_time_limit=60,
    time_limit=90,
)
def deliver_stock_alert(self, alert: dict):
    """Post a stock alert embed to the configured Discord webhook."""
    webhook_url = settings.discord_webhook_url
    if not webhook_url:
        logger.warning("Discord webhook URL not configured, falling back to log notification")
        log_stock_alert(alert)
        return

    try:
        asyncio.run(post_discord_alert(webhook_url, build_discord_payload(alert)))
    except (httpx.TransportError, httpx.HTTPStatusError, SoftTimeLimitExceeded) as e:
        if self.request.retries >= self.max_retries:
            logger.error(f"Discord alert for target {alert.get('target_id')} failed after retries: {e}")
            log_stock_alert(alert)
            return
        logger.warning(f"Retriable error delivering alert for target {alert.get('target_id')}: {e}")
        raise self.retry(exc=e) from e
    except Exception as e:
        logger.error(f"Discord alert delivery failed for target {alert.get('target_id')}: {e}")
        log_stock_alert(alert)
        return

    logger.info(f"Discord notification sent for {alert.get('name')} (ID: {alert.get('product_id')})")
