import pytest

from gcpubsub.datastructures import (
    Acknowledger,
    Channel,
    ChannelOptions,
    Message,
    Subscription,
    SubscriptionCreateOptions,
)
from gcpubsub.provisioning import ChannelProvisioner
from gcpubsub.retry import RetryPolicy
from gcpubsub.transport.base import DeliveryCallbacks, Transport


class FakeAcknowledger(Acknowledger):
    def __init__(self) -> None:
        self.acks = 0
        self.nacks = 0

    def ack(self) -> None:
        self.acks += 1

    def nack(self) -> None:
        self.nacks += 1


class FakeTransport(Transport):
    """An in-memory broker delivering published messages synchronously."""

    def __init__(self, project_id: str = "test-project") -> None:
        super().__init__(project_id)
        self.calls: list[str] = []
        self.channels: dict[str, Channel] = {}
        self.subscriptions: dict[str, Subscription] = {}
        self.created_channels: list[str] = []
        self.created_subscriptions: list[tuple[str, SubscriptionCreateOptions]] = []
        self.closed_subscriptions: list[str] = []
        self.deleted_subscriptions: list[str] = []
        self.published: list[tuple[str, bytes, dict[str, str], str]] = []
        self.delivered: list[Message] = []
        self.delivery_callbacks: dict[str, list[DeliveryCallbacks]] = {}
        self.error_callbacks: dict[str, list[DeliveryCallbacks]] = {}
        self.deliveries_per_subscription: dict[str, int] = {}
        self.create_channel_errors: list[Exception] = []
        self.publish_error: Exception | None = None

    def add_channel(self, channel: Channel) -> None:
        self.channels[channel.path] = channel

    def add_subscription(self, subscription: Subscription) -> None:
        self.add_channel(subscription.channel)
        self.subscriptions[subscription.path] = subscription

    async def channel_exists(self, channel: Channel) -> bool:
        self.calls.append("channel_exists")
        return channel.path in self.channels

    async def create_channel(self, channel: Channel, options: ChannelOptions) -> Channel:
        self.calls.append("create_channel")
        if self.create_channel_errors:
            raise self.create_channel_errors.pop(0)

        self.created_channels.append(channel.path)
        self.channels.setdefault(channel.path, channel)
        return channel

    async def subscription_exists(self, subscription: Subscription) -> bool:
        self.calls.append("subscription_exists")
        return subscription.path in self.subscriptions

    async def create_subscription(
        self, subscription: Subscription, options: SubscriptionCreateOptions
    ) -> Subscription:
        self.calls.append("create_subscription")
        self.created_subscriptions.append((subscription.path, options))
        self.subscriptions.setdefault(subscription.path, subscription)
        return subscription

    async def publish(
        self,
        channel: Channel,
        data: bytes,
        attributes: dict[str, str] | None = None,
        ordering_key: str = "",
    ) -> str:
        self.calls.append("publish")
        if self.publish_error is not None:
            raise self.publish_error

        message_id = str(len(self.published) + 1)
        attributes = dict(attributes or {})
        self.published.append((channel.path, data, attributes, ordering_key))

        for path, subscription in list(self.subscriptions.items()):
            listeners = self.delivery_callbacks.get(path)
            if subscription.channel.path != channel.path or not listeners:
                continue

            # Listeners of one subscription share its messages in turn.
            count = self.deliveries_per_subscription.get(path, 0)
            self.deliveries_per_subscription[path] = count + 1
            message = build_message(data, attributes, message_id=message_id)
            self.delivered.append(message)
            await listeners[count % len(listeners)].on_message(message)

        return message_id

    def install_delivery_handler(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> None:
        self.calls.append("install_delivery_handler")
        self.delivery_callbacks.setdefault(subscription.path, []).append(callbacks)

    def install_error_handler(self, subscription: Subscription, callbacks: DeliveryCallbacks) -> None:
        self.calls.append("install_error_handler")
        self.error_callbacks.setdefault(subscription.path, []).append(callbacks)

    def remove_handlers(self, subscription: Subscription, callbacks: DeliveryCallbacks) -> None:
        self.calls.append("remove_handlers")
        for registry in (self.delivery_callbacks, self.error_callbacks):
            listeners = registry.get(subscription.path, [])
            if callbacks in listeners:
                listeners.remove(callbacks)
            if not listeners:
                registry.pop(subscription.path, None)

    async def close_subscription(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> None:
        self.calls.append("close_subscription")
        self.closed_subscriptions.append(subscription.path)

    async def delete_subscription(self, subscription: Subscription) -> None:
        self.calls.append("delete_subscription")
        self.deleted_subscriptions.append(subscription.path)
        self.subscriptions.pop(subscription.path, None)

    async def deliver(self, subscription: Subscription, message: Message) -> None:
        self.delivered.append(message)
        await self.delivery_callbacks[subscription.path][0].on_message(message)

    async def fail(self, subscription: Subscription, error: Exception) -> None:
        for callbacks in list(self.error_callbacks.get(subscription.path, [])):
            await callbacks.on_error(error)


def build_message(
    data: bytes,
    attributes: dict[str, str] | None = None,
    message_id: str = "1",
) -> Message:
    return Message(
        id=message_id,
        data=data,
        attributes=attributes or {},
        acknowledger=FakeAcknowledger(),
        ack_id=f"ack-{message_id}",
        size=len(data),
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def provisioner(transport: FakeTransport) -> ChannelProvisioner:
    return ChannelProvisioner(transport, retry_policy=RetryPolicy(wait_millis=0, retry_on_any_error=False))


@pytest.fixture
def channel(provisioner: ChannelProvisioner, transport: FakeTransport) -> Channel:
    channel = provisioner.get_channel("orders")
    transport.add_channel(channel)
    return channel


@pytest.fixture
def subscription(
    provisioner: ChannelProvisioner, transport: FakeTransport, channel: Channel
) -> Subscription:
    subscription = provisioner.get_subscription(channel, "orders-worker")
    transport.add_subscription(subscription)
    return subscription
