"""Idempotent create-or-get of channels and subscriptions."""

from dataclasses import replace

from gcpubsub.datastructures import (
    CallRetrySettings,
    Channel,
    ChannelOptions,
    MessageRetryPolicy,
    Subscription,
    SubscriptionCreateOptions,
    SubscriptionGetOptions,
)
from gcpubsub.exceptions import ProvisioningError
from gcpubsub.logger import logger
from gcpubsub.retry import RetryPolicy, RetryRunner
from gcpubsub.transport.base import Transport

# Only transient transport errors are retried, anything else reaches the caller.
DEFAULT_PROVISIONING_RETRY_POLICY = RetryPolicy(
    wait_millis=100,
    max_attempts=3,
    retry_on_empty_result=True,
    retry_on_any_error=False,
)

DEFAULT_SUBSCRIPTION_RETRY_BACKOFF = MessageRetryPolicy(
    min_backoff_delay_secs=1,
    max_backoff_delay_secs=60,
)


def generate_call_options(options: ChannelOptions | None = None) -> ChannelOptions:
    """Returns a copy of the channel options with the default call retry set."""
    result = options if options is not None else ChannelOptions()
    if result.call_retry is None:
        result = replace(result, call_retry=CallRetrySettings())
    return result


def generate_create_subscription_options(
    options: SubscriptionCreateOptions | None = None,
) -> SubscriptionCreateOptions:
    """Returns a copy of the creation options with the defaults set.

    A bounded redelivery backoff is always present so that nacked messages
    are not redelivered in a hot loop.
    """
    result = options if options is not None else SubscriptionCreateOptions()
    if result.retry_backoff is None:
        result = replace(result, retry_backoff=DEFAULT_SUBSCRIPTION_RETRY_BACKOFF)

    if result.call_retry is None:
        result = replace(result, call_retry=CallRetrySettings())

    return result


class ChannelProvisioner:
    def __init__(self, transport: Transport, retry_policy: RetryPolicy | None = None):
        self.transport = transport
        self.retry_policy = retry_policy or DEFAULT_PROVISIONING_RETRY_POLICY

    def get_channel(self, name: str, options: ChannelOptions | None = None) -> Channel:
        """Returns a channel handle without checking that it exists."""
        return Channel(
            name=name,
            path=self.transport.topic_path(name),
            options=generate_call_options(options),
        )

    def get_subscription(
        self,
        channel: Channel,
        name: str,
        get_options: SubscriptionGetOptions | None = None,
        retry_backoff: MessageRetryPolicy | None = None,
        ack_deadline_seconds: int = 60,
    ) -> Subscription:
        """Returns a subscription handle without checking that it exists."""
        get_options = get_options or SubscriptionGetOptions()
        return Subscription(
            name=name,
            path=self.transport.subscription_path(name),
            channel=channel,
            ack_deadline_seconds=ack_deadline_seconds,
            retry_backoff=retry_backoff or DEFAULT_SUBSCRIPTION_RETRY_BACKOFF,
            flow_control=get_options.flow_control,
        )

    async def get_or_create_channel(self, name: str, options: ChannelOptions | None = None) -> Channel:
        channel = self.get_channel(name, options)
        if await self.transport.channel_exists(channel):
            logger.info(f"Topic already exists: {channel.path}")
            return channel

        runner = RetryRunner[Channel](self.retry_policy)
        new_channel = await runner.run(
            lambda: self.transport.create_channel(channel, channel.options)
        )
        if new_channel is None:
            raise ProvisioningError(
                f"We could not create the topic {channel.path} "
                f"after {self.retry_policy.max_attempts} attempts."
            )

        logger.info(f"New topic created: {new_channel.path}")
        return new_channel

    async def get_or_create_subscription(
        self,
        channel: Channel,
        name: str,
        create_options: SubscriptionCreateOptions | None = None,
        get_options: SubscriptionGetOptions | None = None,
    ) -> Subscription:
        logger.debug(f"Creating subscription: {name} for topic: {channel.path}")
        create_options = generate_create_subscription_options(create_options)
        subscription = self.get_subscription(
            channel,
            name,
            get_options=get_options,
            retry_backoff=create_options.retry_backoff,
            ack_deadline_seconds=create_options.ack_deadline_seconds,
        )

        if await self.transport.subscription_exists(subscription):
            logger.info(f"Subscription already exists: {subscription.path}")
            return subscription

        runner = RetryRunner[Subscription](self.retry_policy)
        new_subscription = await runner.run(
            lambda: self.transport.create_subscription(subscription, create_options)
        )
        if new_subscription is None:
            raise ProvisioningError(
                f"We could not create the subscription {subscription.path} "
                f"after {self.retry_policy.max_attempts} attempts."
            )

        logger.info(f"New subscription created: {new_subscription.path}")
        return new_subscription
