"""
Tests for jobflow/utils/alerting.py — critical alerts with per-type cooldown.
"""
from unittest.mock import AsyncMock, MagicMock, patch

from jobflow.utils import alerting
from jobflow.utils.alerting import AlertType, send_alert


def _settings(url="https://hooks.example.com/test"):
    settings = MagicMock()
    settings.alert_webhook_url = url
    return settings


def _http_client():
    client = AsyncMock()
    client.post = AsyncMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=False)
    return client


class TestSendAlert:
    async def test_posts_to_webhook(self, mock_redis):
        client = _http_client()
        with (
            patch("jobflow.config.get_settings", return_value=_settings()),
            patch("httpx.AsyncClient", return_value=client),
        ):
            await send_alert(
                AlertType.CRM_SYNC_FAILED, "Lead abc12345 failed",
                correlation_id="corr-1", extra={"lead_id": "abc12345"},
            )

        content = client.post.call_args.kwargs["json"]["content"]
        assert "crm_sync_failed" in content
        assert "corr-1" in content
        assert "lead_id: abc12345" in content

    async def test_cooldown_suppresses_repeat(self, mock_redis):
        mock_redis.set.return_value = None
        client = _http_client()
        with (
            patch("jobflow.config.get_settings", return_value=_settings()),
            patch("httpx.AsyncClient", return_value=client),
        ):
            await send_alert(AlertType.WEBHOOK_PROCESSING_FAILED, "boom")
        client.post.assert_not_called()

    async def test_no_webhook_configured(self, mock_redis):
        client = _http_client()
        with (
            patch("jobflow.config.get_settings", return_value=_settings(url="")),
            patch("httpx.AsyncClient", return_value=client),
        ):
            await send_alert(AlertType.CRM_SYNC_FAILED, "quiet")
        client.post.assert_not_called()

    async def test_in_memory_cooldown_when_redis_down(self):
        with (
            patch.dict(alerting._local_cooldowns, clear=True),
            patch("jobflow.utils.redis_client.get_redis", new_callable=AsyncMock,
                  side_effect=ConnectionError("refused")),
        ):
            assert await alerting._acquire_cooldown("x") is True
            assert await alerting._acquire_cooldown("x") is False
