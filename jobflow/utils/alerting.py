"""
Critical alerting - sends alerts on events an operator must see.

Alert channels:
1. Structured log (always) - at ERROR level
2. Webhook (configurable) - Discord/Slack URL via ALERT_WEBHOOK_URL env var

Rate limiting: per-type cooldown stored in Redis, in-memory fallback.
"""
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

ALERT_COOLDOWN_SECONDS = 300  # 5 minutes

_local_cooldowns: dict[str, float] = {}  # alert_type → expiry (monotonic)


class AlertType:
    """Alert type constants."""
    CRM_SYNC_FAILED = "crm_sync_failed"
    WEBHOOK_PROCESSING_FAILED = "webhook_processing_failed"


async def send_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str] = None,
    extra: Optional[dict] = None,
) -> None:
    """
    Send an alert through all configured channels.
    Rate-limited per alert type to prevent alert storms.
    """
    if not await _acquire_cooldown(alert_type):
        return

    from jobflow.utils.logging import get_correlation_id
    cid = correlation_id or get_correlation_id()

    log_message = f"ALERT [{alert_type}]: {message}"
    if cid:
        log_message += f" (correlation_id={cid})"
    logger.error(log_message)

    await _send_webhook_alert(alert_type, message, cid, extra)


async def _acquire_cooldown(alert_type: str) -> bool:
    """Atomically check-and-set the cooldown. Returns True if the alert should go out."""
    try:
        from jobflow.utils.redis_client import get_redis
        redis = await get_redis()
        acquired = await redis.set(
            f"jobflow:alert_cooldown:{alert_type}", "1", nx=True, ex=ALERT_COOLDOWN_SECONDS,
        )
        return bool(acquired)
    except Exception as e:
        logger.debug("Alert cooldown Redis check failed, using in-memory fallback: %s", str(e))
        now = time.monotonic()
        if now < _local_cooldowns.get(alert_type, 0):
            return False
        _local_cooldowns[alert_type] = now + ALERT_COOLDOWN_SECONDS
        return True


async def _send_webhook_alert(
    alert_type: str,
    message: str,
    correlation_id: Optional[str],
    extra: Optional[dict],
) -> None:
    """Send alert to configured webhook (Discord/Slack)."""
    from jobflow.config import get_settings
    webhook_url = get_settings().alert_webhook_url
    if not webhook_url:
        return

    content = f"**{alert_type}**\n{message}"
    if correlation_id:
        content += f"\n`correlation_id: {correlation_id}`"
    for key, val in (extra or {}).items():
        content += f"\n`{key}: {val}`"

    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            await client.post(webhook_url, json={"content": content})
    except httpx.HTTPError as e:
        logger.warning("Failed to send webhook alert: %s", str(e))
