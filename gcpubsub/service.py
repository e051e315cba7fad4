"""A simple wrapper for commonly used Pub/Sub operations."""

import os

from pydantic import BaseModel, ConfigDict, Field, validate_call

from gcpubsub.datastructures import (
    Channel,
    ChannelOptions,
    Subscription,
    SubscriptionCreateOptions,
    SubscriptionGetOptions,
)
from gcpubsub.exceptions import GCPubSubException
from gcpubsub.logger import logger
from gcpubsub.provisioning import ChannelProvisioner
from gcpubsub.publisher import Publisher
from gcpubsub.retry import RetryPolicy
from gcpubsub.subscriber import Subscriber
from gcpubsub.transport.base import Transport
from gcpubsub.transport.pubsub import PubSubTransport
from gcpubsub.types import ErrorHandler, MessageHandler


class PubSubSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    project_id: str = Field(min_length=1)
    emulator_host: str | None = None

    @classmethod
    def from_env(cls, project_id: str | None = None) -> "PubSubSettings":
        project_id = (
            project_id or os.getenv("GCPUBSUB_PROJECT_ID") or os.getenv("GOOGLE_CLOUD_PROJECT")
        )
        if not project_id:
            raise GCPubSubException(
                "The project id is not set. Please set the GCPUBSUB_PROJECT_ID "
                "or GOOGLE_CLOUD_PROJECT environment variable."
            )
        return cls(project_id=project_id, emulator_host=os.getenv("PUBSUB_EMULATOR_HOST"))


class PubSubService:
    """Entry point to provision topics and subscriptions and to obtain
    publishers and subscribers bound to them.
    """

    def __init__(
        self,
        settings: PubSubSettings,
        transport: Transport | None = None,
        retry_policy: RetryPolicy | None = None,
    ):
        self.settings = settings
        if transport is None:
            if settings.emulator_host:
                os.environ.setdefault("PUBSUB_EMULATOR_HOST", settings.emulator_host)
                logger.debug(f"Using the Pub/Sub emulator at {settings.emulator_host}")
            transport = PubSubTransport(project_id=settings.project_id)

        self.transport = transport
        self.provisioner = ChannelProvisioner(transport, retry_policy=retry_policy)

    @property
    def project_id(self) -> str:
        return self.settings.project_id

    @validate_call(config=ConfigDict(strict=True))
    def get_topic(self, topic_name: str, options: ChannelOptions | None = None) -> Channel:
        """Returns an existing topic. Use ``create_topic`` when not sure it exists."""
        return self.provisioner.get_channel(topic_name, options)

    def get_subscription(
        self,
        topic: Channel,
        subscription_name: str,
        options: SubscriptionGetOptions | None = None,
    ) -> Subscription:
        """Returns an existing subscription. Use ``create_subscription`` when not sure it exists."""
        return self.provisioner.get_subscription(topic, subscription_name, get_options=options)

    @validate_call(config=ConfigDict(strict=True))
    async def create_topic(self, topic_name: str, options: ChannelOptions | None = None) -> Channel:
        return await self.provisioner.get_or_create_channel(topic_name, options)

    async def create_subscription(
        self,
        topic: Channel,
        subscription_name: str,
        options: SubscriptionCreateOptions | None = None,
        subscription_options: SubscriptionGetOptions | None = None,
    ) -> Subscription:
        return await self.provisioner.get_or_create_subscription(
            topic, subscription_name, options, subscription_options
        )

    async def create_publisher(
        self, topic: str | Channel, options: ChannelOptions | None = None
    ) -> Publisher:
        channel = await self._resolve_topic(topic, options)
        return Publisher(self.transport, channel)

    async def create_subscriber(
        self,
        topic: str | Channel,
        subscription_name: str,
        options: SubscriptionCreateOptions | None = None,
        topic_options: ChannelOptions | None = None,
        subscription_options: SubscriptionGetOptions | None = None,
    ) -> Subscriber:
        channel = await self._resolve_topic(topic, topic_options)
        subscription = await self.create_subscription(
            channel, subscription_name, options, subscription_options
        )
        return Subscriber(self.transport, subscription)

    async def subscribe(
        self,
        subscription: Subscription,
        handler: MessageHandler,
        error_handler: ErrorHandler | None = None,
    ) -> Subscriber:
        """Listens on the subscription and returns the listening subscriber."""
        subscriber = Subscriber(self.transport, subscription)
        await subscriber.listen(handler, error_handler)
        return subscriber

    async def close(self) -> None:
        if isinstance(self.transport, PubSubTransport):
            await self.transport.shutdown()

    async def _resolve_topic(self, topic: str | Channel, options: ChannelOptions | None) -> Channel:
        if isinstance(topic, Channel):
            return topic

        if not (topic and isinstance(topic, str) and topic.strip()):
            raise GCPubSubException(f"The topic name value ({topic!r}) is invalid.")

        return await self.create_topic(topic, options)
