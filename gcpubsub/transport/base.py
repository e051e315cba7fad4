from abc import ABC, abstractmethod

from gcpubsub.datastructures import (
    Channel,
    ChannelOptions,
    Message,
    Subscription,
    SubscriptionCreateOptions,
)


class DeliveryCallbacks(ABC):
    """The callbacks a transport invokes for a listened subscription."""

    @abstractmethod
    async def on_message(self, message: Message) -> None:
        """Handles one delivered message. Must never raise."""
        pass

    @abstractmethod
    async def on_error(self, error: Exception) -> None:
        """Handles a broker-level error not tied to a specific message. Must never raise."""
        pass

    @abstractmethod
    def on_close(self) -> None:
        """Called once the delivery stream of the subscription is closed."""
        pass


class Transport(ABC):
    """Contract of the managed broker used by the messaging core."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id

    def topic_path(self, topic_name: str) -> str:
        return f"projects/{self.project_id}/topics/{topic_name}"

    def subscription_path(self, subscription_name: str) -> str:
        return f"projects/{self.project_id}/subscriptions/{subscription_name}"

    @abstractmethod
    async def channel_exists(self, channel: Channel) -> bool:
        pass

    @abstractmethod
    async def create_channel(self, channel: Channel, options: ChannelOptions) -> Channel:
        """Creates the channel. An already existing channel is not an error."""
        pass

    @abstractmethod
    async def subscription_exists(self, subscription: Subscription) -> bool:
        pass

    @abstractmethod
    async def create_subscription(
        self, subscription: Subscription, options: SubscriptionCreateOptions
    ) -> Subscription:
        """Creates the subscription. An already existing one is not an error."""
        pass

    @abstractmethod
    async def publish(
        self,
        channel: Channel,
        data: bytes,
        attributes: dict[str, str] | None = None,
        ordering_key: str = "",
    ) -> str:
        """Publishes the data and returns the broker assigned message id."""
        pass

    @abstractmethod
    def install_delivery_handler(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> None:
        """Starts delivering messages to ``callbacks.on_message``.

        Each callbacks object gets its own delivery stream, so several
        listeners of one subscription share its messages. ``callbacks.on_close``
        is called when that stream ends on its own.
        """
        pass

    @abstractmethod
    def install_error_handler(self, subscription: Subscription, callbacks: DeliveryCallbacks) -> None:
        """Routes broker-level errors of the subscription to ``callbacks.on_error``."""
        pass

    @abstractmethod
    def remove_handlers(self, subscription: Subscription, callbacks: DeliveryCallbacks) -> None:
        """Detaches ``callbacks`` from the subscription. Other listeners are untouched."""
        pass

    @abstractmethod
    async def close_subscription(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> None:
        """Stops the delivery stream opened for ``callbacks``."""
        pass

    @abstractmethod
    async def delete_subscription(self, subscription: Subscription) -> None:
        pass
