"""
Unit tests for the notification dispatcher and providers.
"""
import json
from unittest.mock import patch

import httpx
import pytest

from waitline.models.queue import Platform
from waitline.services.notification_service import (
    ConsoleNotificationProvider,
    MessageChannel,
    NotificationDispatcher,
    PushNotificationProvider,
    WebhookNotificationProvider,
    channel_for_platform,
)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_console_provider():
    """Test console provider sends successfully."""
    provider = ConsoleNotificationProvider()

    assert provider.channel == MessageChannel.WEBCHAT

    success = await provider.send(to="c-1", message="Your table is ready")

    assert success is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_push_notification_provider():
    """Test push notification stub."""
    provider = PushNotificationProvider()

    assert provider.channel == MessageChannel.PUSH

    success = await provider.send(
        to="c-1",
        message="Test push notification",
        title="Test Title"
    )

    assert success is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_webhook_provider_posts_payload():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202, json={"queued": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = WebhookNotificationProvider(
        "https://relay.test/messages",
        channel=MessageChannel.WHATSAPP,
        client=client,
    )

    success = await provider.send(
        to="c-1",
        message="Hello",
        notification_type="table_ready",
        session_id=None,
    )
    await client.aclose()

    assert success is True
    [request] = requests
    assert request.url == "https://relay.test/messages"
    assert json.loads(request.content) == {
        "customer_id": "c-1",
        "channel": "whatsapp",
        "message": "Hello",
        "notification_type": "table_ready",
    }


@pytest.mark.unit
@pytest.mark.asyncio
async def test_webhook_provider_reports_http_errors():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    provider = WebhookNotificationProvider("https://relay.test/messages", client=client)

    success = await provider.send(to="c-1", message="Hello")
    await client.aclose()

    assert success is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_webhook_provider_reports_connection_errors():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError("refused", request=request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = WebhookNotificationProvider(
        "https://relay.test/messages",
        client=client,
        max_attempts=3,
        backoff=0,
    )

    assert await provider.send(to="c-1", message="Hello") is False
    await client.aclose()

    assert len(attempts) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_webhook_provider_retries_until_relay_answers():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectTimeout("slow", request=request)
        return httpx.Response(200)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = WebhookNotificationProvider("https://relay.test/messages", client=client, backoff=0)

    assert await provider.send(to="c-1", message="Hello") is True
    await client.aclose()

    assert len(attempts) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_webhook_provider_does_not_retry_error_status():
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    provider = WebhookNotificationProvider("https://relay.test/messages", client=client, backoff=0)

    assert await provider.send(to="c-1", message="Hello") is False
    await client.aclose()

    assert len(attempts) == 1


@pytest.mark.unit
def test_channel_for_platform():
    assert channel_for_platform(Platform.WEB) == MessageChannel.WEBCHAT
    assert channel_for_platform(Platform.WHATSAPP) == MessageChannel.WHATSAPP
    assert channel_for_platform("messenger") == MessageChannel.MESSENGER
    assert channel_for_platform("carrier-pigeon") == MessageChannel.WEBCHAT


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_routes_by_channel(provider, metrics):
    whatsapp = type(provider)(channel=MessageChannel.WHATSAPP)
    dispatcher = NotificationDispatcher(
        providers={MessageChannel.WEBCHAT: provider, MessageChannel.WHATSAPP: whatsapp},
        metrics=metrics,
    )

    assert await dispatcher.send("c-1", "whatsapp", "Hi", notification_type="table_ready") is True

    assert provider.sent == []
    assert whatsapp.sent[0]["message"] == "Hi"
    assert metrics.get_counter_value(
        "queue_notifications_sent_total",
        {"notification_type": "table_ready", "channel": "whatsapp", "status": "sent"},
    ) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_falls_back_to_default_channel(dispatcher, provider):
    assert await dispatcher.send("c-1", MessageChannel.MESSENGER, "Hi") is True
    assert await dispatcher.send("c-1", "unknown-channel", "Hi again") is True
    assert await dispatcher.send("c-1", None, "And again") is True

    assert [m["message"] for m in provider.sent] == ["Hi", "Hi again", "And again"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_swallows_provider_errors(dispatcher, provider, metrics):
    provider.error = RuntimeError("socket closed")

    success = await dispatcher.send("c-1", "webchat", "Hi", notification_type="no_show_final")

    assert success is False
    assert metrics.get_counter_value(
        "queue_notifications_sent_total",
        {"notification_type": "no_show_final", "channel": "webchat", "status": "failed"},
    ) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatcher_without_matching_provider(metrics):
    dispatcher = NotificationDispatcher(
        providers={},
        default_channel=MessageChannel.WEBCHAT,
        metrics=metrics,
    )

    assert await dispatcher.send("c-1", "sms", "Hi") is False


@pytest.mark.unit
def test_default_providers_use_console_without_webhook(metrics):
    with patch("waitline.services.notification_service.settings") as mock_settings:
        mock_settings.notification_webhook_url = None
        mock_settings.default_channel = "webchat"

        dispatcher = NotificationDispatcher(metrics=metrics)

    assert isinstance(dispatcher._get_provider(MessageChannel.WEBCHAT), ConsoleNotificationProvider)
    assert isinstance(dispatcher._get_provider(MessageChannel.PUSH), PushNotificationProvider)


@pytest.mark.unit
def test_default_providers_use_webhook_when_configured(metrics):
    with patch("waitline.services.notification_service.settings") as mock_settings:
        mock_settings.notification_webhook_url = "https://relay.test/messages"
        mock_settings.notification_webhook_timeout = 2.0
        mock_settings.notification_webhook_max_attempts = 5
        mock_settings.default_channel = "webchat"

        dispatcher = NotificationDispatcher(metrics=metrics)

    provider = dispatcher._get_provider(MessageChannel.MESSENGER)
    assert isinstance(provider, WebhookNotificationProvider)
    assert provider.channel == MessageChannel.MESSENGER
    assert provider.timeout == 2.0
    assert provider.max_attempts == 5


@pytest.mark.unit
@pytest.mark.asyncio
async def test_register_provider_replaces_channel(dispatcher):
    replacement = PushNotificationProvider()
    dispatcher.register_provider(replacement)

    assert await dispatcher.send("c-1", "push", "Hi") is True
