"""
Notification dispatcher for queue messages.

The queue engine only decides WHAT to say and WHEN; providers here decide HOW
it reaches the customer. Delivery is best-effort: failures are logged and
reported as False, never raised back into the timer chain.

Providers: webchat/messaging relay over HTTP (webhook), console (dev), push (stub).
"""
import enum
from abc import ABC, abstractmethod
from typing import Dict, Optional, Union

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from waitline.lib.logging import get_logger
from waitline.lib.metrics import MetricsCollector, get_metrics_collector
from waitline.lib.settings import settings


logger = get_logger(__name__)


class MessageChannel(str, enum.Enum):
    """Delivery channel enumeration."""
    WEBCHAT = "webchat"
    PUSH = "push"
    WHATSAPP = "whatsapp"
    MESSENGER = "messenger"
    SMS = "sms"


# Entry platform -> preferred channel
PLATFORM_CHANNELS = {
    "web": MessageChannel.WEBCHAT,
    "whatsapp": MessageChannel.WHATSAPP,
    "messenger": MessageChannel.MESSENGER,
}


def channel_for_platform(platform: str) -> MessageChannel:
    """Channel hint for the platform a customer joined from."""
    return PLATFORM_CHANNELS.get(str(getattr(platform, "value", platform)), MessageChannel.WEBCHAT)


class NotificationProvider(ABC):
    """
    Abstract base class for notification delivery providers.
    """

    @abstractmethod
    async def send(
        self,
        to: str,
        message: str,
        **kwargs
    ) -> bool:
        """
        Send notification via this provider.

        Args:
            to: Recipient identifier (customer id, session id, phone...)
            message: Message content to send
            **kwargs: Provider-specific parameters

        Returns:
            True if sent successfully, False otherwise
        """
        pass

    @property
    @abstractmethod
    def channel(self) -> MessageChannel:
        """Return the channel this provider supports."""
        pass


class ConsoleNotificationProvider(NotificationProvider):
    """
    Console provider for development/testing.
    Prints messages to console instead of sending.
    """

    def __init__(self, channel: MessageChannel = MessageChannel.WEBCHAT):
        self._channel = channel

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    async def send(
        self,
        to: str,
        message: str,
        **kwargs
    ) -> bool:
        """
        Print message to console.

        Returns:
            Always True
        """
        print("\n" + "=" * 60)
        print(f"\U0001F4AC {self._channel.value} message to {to}:")
        print(f"   {message}")
        print("=" * 60 + "\n")
        logger.info("Message logged to console", extra={"customer_id": to, "channel": self._channel.value})
        return True


class PushNotificationProvider(NotificationProvider):
    """
    Push notification provider stub.
    """

    @property
    def channel(self) -> MessageChannel:
        return MessageChannel.PUSH

    async def send(
        self,
        to: str,
        message: str,
        **kwargs
    ) -> bool:
        """
        Stub for push notifications.

        Args:
            to: Customer id the push subscription is registered under
            message: Notification content
            **kwargs: Notification parameters (title, data, etc.)

        Returns:
            True (stub always succeeds)
        """
        title = kwargs.get("title", settings.app_name)
        logger.info(
            f"Push notification stub called: {title}",
            extra={"customer_id": to, "channel": self.channel.value},
        )
        return True


class WebhookNotificationProvider(NotificationProvider):
    """
    Relays messages to an HTTP endpoint that owns the real transport
    (webchat sockets, WhatsApp, Messenger).

    Connection-level failures are retried with exponential backoff; an HTTP
    error status from the relay is final.
    """

    def __init__(
        self,
        url: str,
        channel: MessageChannel = MessageChannel.WEBCHAT,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        backoff: float = 1.0,
    ):
        self.url = url
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff = backoff
        self._channel = channel
        self._client = client

    @property
    def channel(self) -> MessageChannel:
        return self._channel

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.url, json=payload, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.url, json=payload)

    async def send(
        self,
        to: str,
        message: str,
        **kwargs
    ) -> bool:
        """
        POST the message to the relay.

        Returns:
            True on a 2xx response, False otherwise
        """
        payload = {
            "customer_id": to,
            "channel": self._channel.value,
            "message": message,
            **{key: value for key, value in kwargs.items() if value is not None},
        }

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff, max=10),
                retry=retry_if_exception_type(httpx.TransportError),
                reraise=True,
            ):
                with attempt:
                    response = await self._post(payload)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(
                f"Webhook relay failed: {e}",
                extra={"customer_id": to, "channel": self._channel.value},
            )
            return False


class NotificationDispatcher:
    """
    Routes a message to the provider for its channel.

    Handles:
    - Provider selection based on channel hint, with a default-channel fallback
    - Swallowing provider errors (delivery is best-effort)
    - Metrics per notification type and channel
    """

    def __init__(
        self,
        providers: Optional[Dict[MessageChannel, NotificationProvider]] = None,
        default_channel: Union[MessageChannel, str, None] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            providers: Channel -> provider map; built from settings when omitted
            default_channel: Fallback channel when a hint has no provider
            metrics: Metrics collector (global singleton when omitted)
        """
        self._providers: Dict[MessageChannel, NotificationProvider] = (
            dict(providers) if providers is not None else self._default_providers()
        )
        self.default_channel = _coerce_channel(default_channel or settings.default_channel) or MessageChannel.WEBCHAT
        self.metrics = metrics or get_metrics_collector()

        logger.info(f"NotificationDispatcher initialized with {len(self._providers)} providers")

    @staticmethod
    def _default_providers() -> Dict[MessageChannel, NotificationProvider]:
        providers: Dict[MessageChannel, NotificationProvider] = {}

        if settings.notification_webhook_url:
            for channel in (MessageChannel.WEBCHAT, MessageChannel.WHATSAPP, MessageChannel.MESSENGER):
                providers[channel] = WebhookNotificationProvider(
                    settings.notification_webhook_url,
                    channel=channel,
                    timeout=settings.notification_webhook_timeout,
                    max_attempts=settings.notification_webhook_max_attempts,
                )
        else:
            providers[MessageChannel.WEBCHAT] = ConsoleNotificationProvider(MessageChannel.WEBCHAT)
            logger.info("Using console webchat provider (dev mode)")

        providers[MessageChannel.PUSH] = PushNotificationProvider()
        return providers

    def register_provider(self, provider: NotificationProvider) -> None:
        """Add or replace the provider for its channel."""
        self._providers[provider.channel] = provider

    def _get_provider(self, channel: Optional[MessageChannel]) -> Optional[NotificationProvider]:
        if channel is not None and channel in self._providers:
            return self._providers[channel]
        return self._providers.get(self.default_channel)

    async def send(
        self,
        customer_id: str,
        channel_hint: Union[MessageChannel, str, None],
        message: str,
        notification_type: str = "generic",
        **context
    ) -> bool:
        """
        Deliver a message to a customer.

        Args:
            customer_id: External customer correlation key
            channel_hint: Preferred channel (falls back to the default channel)
            message: Fully formatted message text
            notification_type: Message purpose, for logs and metrics
            **context: Extra provider parameters (session_id, phone, ...)

        Returns:
            True if a provider accepted the message, False otherwise
        """
        channel = _coerce_channel(channel_hint)
        provider = self._get_provider(channel)

        if provider is None:
            logger.error(
                f"No provider for channel: {channel_hint}",
                extra={"customer_id": customer_id, "notification_type": notification_type},
            )
            self.metrics.increment_notifications(notification_type, str(channel_hint), status="failed")
            return False

        try:
            success = await provider.send(customer_id, message, notification_type=notification_type, **context)
        except Exception as e:
            logger.error(
                f"Error sending message: {e}",
                extra={
                    "customer_id": customer_id,
                    "channel": provider.channel.value,
                    "notification_type": notification_type,
                },
                exc_info=True,
            )
            success = False

        self.metrics.increment_notifications(
            notification_type,
            provider.channel.value,
            status="sent" if success else "failed",
        )

        if success:
            logger.info(
                "Message sent successfully",
                extra={"customer_id": customer_id, "channel": provider.channel.value, "notification_type": notification_type},
            )
        else:
            logger.warning(
                "Message send failed",
                extra={"customer_id": customer_id, "channel": provider.channel.value, "notification_type": notification_type},
            )
        return bool(success)


def _coerce_channel(value: Union[MessageChannel, str, None]) -> Optional[MessageChannel]:
    if value is None or isinstance(value, MessageChannel):
        return value
    try:
        return MessageChannel(str(value).lower())
    except ValueError:
        return None
