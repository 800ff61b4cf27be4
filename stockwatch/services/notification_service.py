"""Stock alert delivery.

``log`` mode writes the alert to the application log. ``discord`` mode hands the
alert to a Celery task that posts a webhook embed and retries on network
errors. Whatever goes wrong, the alert ends up at least in the log and nothing
is raised back into the check that triggered it.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import httpx

from stockwatch.config import HTTP_TIMEOUT
from stockwatch.services.repository import TargetSnapshot

logger = logging.getLogger(__name__)

ALERT_COLOR = 0x00FF00


def alert_from_target(target: TargetSnapshot) -> dict:
    """JSON-serializable alert payload (crosses the Celery broker)."""
    return {
        "target_id": target.id,
        "product_id": target.product_id,
        "name": target.name,
        "url": target.url,
        "owner_id": target.owner_id,
        "detected_at": datetime.now(UTC).isoformat(),
    }


def log_stock_alert(alert: dict) -> None:
    logger.info(
        f"STOCK ALERT: {alert['name']} is now IN STOCK "
        f"(product {alert.get('product_id') or 'unknown'}, added by {alert.get('owner_id')}) {alert['url']}",
        extra={"target_id": alert.get("target_id"), "url": alert["url"]},
    )


def build_discord_payload(alert: dict) -> dict:
    product_id = alert.get("product_id")
    embed = {
        "title": "Stock alert",
        "description": "A product you are watching is back in stock!",
        "color": ALERT_COLOR,
        "timestamp": alert.get("detected_at") or datetime.now(UTC).isoformat(),
        "fields": [
            {"name": "Product", "value": alert["name"], "inline": False},
            {"name": "Product ID", "value": f"`{product_id}`" if product_id else "unknown", "inline": True},
            {"name": "Link", "value": f"[View product]({alert['url']})", "inline": False},
            {"name": "Status", "value": "In stock", "inline": True},
            {"name": "Watched by", "value": alert.get("owner_id") or "unknown", "inline": True},
        ],
        "footer": {"text": "StockWatch" + (f" | ID: {product_id}" if product_id else "")},
    }
    return {
        "content": "**Stock alert**" + (f" (ID: {product_id})" if product_id else ""),
        "embeds": [embed],
    }


async def post_discord_alert(
    webhook_url: str,
    payload: dict,
    transport: httpx.AsyncBaseTransport | None = None,
) -> None:
    """POST the embed. Raises httpx errors (including non-2xx) for the caller to retry."""
    async with httpx.AsyncClient(timeout=HTTP_TIMEOUT, transport=transport) as client:
        resp = await client.post(webhook_url, json=payload)
        resp.raise_for_status()


async def _enqueue_discord_delivery(alert: dict) -> None:
    from stockwatch.workers.notification_tasks import deliver_stock_alert

    # .delay talks to the broker synchronously
    await asyncio.to_thread(deliver_stock_alert.delay, alert)


class StockAlertNotifier:
    def __init__(
        self,
        notification_type: str = "log",
        discord_webhook_url: str = "",
        enqueue: Callable[[dict], Awaitable[None]] | None = None,
    ):
        self.notification_type = notification_type.lower()
        self.discord_webhook_url = discord_webhook_url
        self._enqueue = enqueue or _enqueue_discord_delivery

    async def notify_became_available(self, target: TargetSnapshot) -> None:
        alert = alert_from_target(target)
        logger.info(
            f"Sending stock alert for {target.name} via {self.notification_type}",
            extra={"target_id": target.id},
        )

        if self.notification_type == "discord":
            if not self.discord_webhook_url.strip():
                logger.warning("Discord webhook URL not configured, falling back to log notification")
            else:
                try:
                    await self._enqueue(alert)
                    return
                except Exception as e:
                    logger.error(
                        f"Could not queue Discord alert for target {target.id}, logging instead: {e}",
                        extra={"target_id": target.id},
                    )
        elif self.notification_type != "log":
            logger.warning(f"Unknown notification type: {self.notification_type}")

        log_stock_alert(alert)
