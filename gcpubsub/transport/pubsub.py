import asyncio
from contextlib import suppress
from dataclasses import dataclass
from datetime import timedelta
from functools import partial

import anyio
from google.api_core.exceptions import AlreadyExists, NotFound
from google.api_core.retry import Retry, if_exception_type
from google.cloud.pubsub_v1 import PublisherClient, SubscriberClient
from google.cloud.pubsub_v1.subscriber.exceptions import AcknowledgeError, AcknowledgeStatus
from google.cloud.pubsub_v1.subscriber.futures import Future, StreamingPullFuture
from google.cloud.pubsub_v1.subscriber.message import Message as PubSubMessage
from google.cloud.pubsub_v1.types import FlowControl, PublisherOptions
from google.pubsub_v1.types import DeadLetterPolicy, RetryPolicy
from google.pubsub_v1.types import Subscription as SubscriptionRequest

from gcpubsub.datastructures import (
    Acknowledger,
    CallRetrySettings,
    Channel,
    ChannelOptions,
    Message,
    Subscription,
    SubscriptionCreateOptions,
)
from gcpubsub.exceptions import RETRYABLE_TRANSPORT_EXCEPTIONS
from gcpubsub.logger import logger
from gcpubsub.transport.base import DeliveryCallbacks, Transport

ACKNOWLEDGE_TIMEOUT_SECS = 60


def build_call_retry(settings: CallRetrySettings) -> Retry:
    return Retry(
        predicate=if_exception_type(*RETRYABLE_TRANSPORT_EXCEPTIONS),
        initial=settings.initial_delay_secs,
        multiplier=settings.delay_multiplier,
        maximum=settings.max_delay_secs,
        timeout=settings.total_timeout_secs,
    )


class PubSubAcknowledger(Acknowledger):
    def __init__(self, message: PubSubMessage):
        self._message = message

    def ack(self) -> None:
        future = self._message.ack_with_response()
        self._wait_acknowledge_response(future)

    def nack(self) -> None:
        future = self._message.nack_with_response()
        self._wait_acknowledge_response(future)

    def _wait_acknowledge_response(self, future: Future) -> None:
        try:
            future.result(timeout=ACKNOWLEDGE_TIMEOUT_SECS)
        except AcknowledgeError as e:
            self._on_acknowledge_failed(e)
        except TimeoutError:
            logger.error("The acknowledge response took too long. The message will be retried.")

    def _on_acknowledge_failed(self, e: AcknowledgeError) -> None:
        match e.error_code:
            case AcknowledgeStatus.PERMISSION_DENIED:
                logger.error(
                    "The subscriber does not have permission to ack/nack the "
                    f"message or the subscription does not exists anymore: {e}."
                )
            case AcknowledgeStatus.FAILED_PRECONDITION:
                logger.error(
                    "The subscription is detached or the subscriber does "
                    f"not have access to encryption keys: {e}."
                )
            case AcknowledgeStatus.INVALID_ACK_ID:
                logger.info("The message ack_id expired. It will be redelivered later.")
            case _:
                logger.critical(f"Some unknown error happened during ack/nack: {e}")


@dataclass
class StreamingListener:
    client: SubscriberClient
    future: StreamingPullFuture | None = None
    callbacks: DeliveryCallbacks | None = None
    error_callbacks: DeliveryCallbacks | None = None


class PubSubTransport(Transport):
    """Google Cloud Pub/Sub implementation of the broker primitives.

    Setting ``PUBSUB_EMULATOR_HOST`` makes the underlying clients talk to
    the local emulator instead of the cloud service.
    """

    def __init__(self, project_id: str) -> None:
        super().__init__(project_id)
        self._publisher_clients: dict[bool, PublisherClient] = {}
        self._subscriber_client: SubscriberClient | None = None
        self._listeners: dict[tuple[str, DeliveryCallbacks], StreamingListener] = {}

    def _get_publisher_client(self, enable_message_ordering: bool = False) -> PublisherClient:
        if enable_message_ordering not in self._publisher_clients:
            publisher_options = PublisherOptions(enable_message_ordering=enable_message_ordering)
            self._publisher_clients[enable_message_ordering] = PublisherClient(
                publisher_options=publisher_options
            )
        return self._publisher_clients[enable_message_ordering]

    def _get_subscriber_client(self) -> SubscriberClient:
        if self._subscriber_client is None:
            self._subscriber_client = SubscriberClient()
        return self._subscriber_client

    async def channel_exists(self, channel: Channel) -> bool:
        client = self._get_publisher_client()
        try:
            await anyio.to_thread.run_sync(partial(client.get_topic, topic=channel.path))
        except NotFound:
            return False
        return True

    async def create_channel(self, channel: Channel, options: ChannelOptions) -> Channel:
        client = self._get_publisher_client()
        call_retry = options.call_retry or CallRetrySettings()

        with suppress(AlreadyExists):
            logger.debug(f"Creating topic '{channel.path}'.")
            await anyio.to_thread.run_sync(
                partial(
                    client.create_topic,
                    name=channel.path,
                    retry=build_call_retry(call_retry),
                    timeout=call_retry.rpc_timeout_secs,
                )
            )
            logger.debug(f"Created topic '{channel.path}' successfully.")

        return channel

    async def subscription_exists(self, subscription: Subscription) -> bool:
        client = self._get_subscriber_client()
        try:
            await anyio.to_thread.run_sync(
                partial(client.get_subscription, subscription=subscription.path)
            )
        except NotFound:
            return False
        return True

    def _create_subscription_request(
        self, subscription: Subscription, options: SubscriptionCreateOptions
    ) -> SubscriptionRequest:
        dlt_policy = None
        if options.dead_letter_policy:
            dlt_topic = self.topic_path(options.dead_letter_policy.topic_name)
            dlt_policy = DeadLetterPolicy(
                dead_letter_topic=dlt_topic,
                max_delivery_attempts=options.dead_letter_policy.max_delivery_attempts,
            )

        backoff = subscription.retry_backoff
        retry_policy = RetryPolicy(
            minimum_backoff=timedelta(seconds=backoff.min_backoff_delay_secs),
            maximum_backoff=timedelta(seconds=backoff.max_backoff_delay_secs),
        )
        return SubscriptionRequest(
            name=subscription.path,
            topic=subscription.channel.path,
            retry_policy=retry_policy,
            dead_letter_policy=dlt_policy,
            filter=options.filter_expression,
            ack_deadline_seconds=options.ack_deadline_seconds,
            enable_message_ordering=options.enable_message_ordering,
            enable_exactly_once_delivery=options.enable_exactly_once_delivery,
        )

    async def create_subscription(
        self, subscription: Subscription, options: SubscriptionCreateOptions
    ) -> Subscription:
        client = self._get_subscriber_client()
        call_retry = options.call_retry or CallRetrySettings()
        subscription_request = self._create_subscription_request(subscription, options)

        with suppress(AlreadyExists):
            logger.debug(f"Attempting to create subscription: {subscription_request.name}")
            await anyio.to_thread.run_sync(
                partial(
                    client.create_subscription,
                    request=subscription_request,
                    retry=build_call_retry(call_retry),
                    timeout=call_retry.rpc_timeout_secs,
                )
            )
            logger.debug(f"Successfully created subscription: {subscription_request.name}")

        return subscription

    async def publish(
        self,
        channel: Channel,
        data: bytes,
        attributes: dict[str, str] | None = None,
        ordering_key: str = "",
    ) -> str:
        client = self._get_publisher_client(channel.options.enable_message_ordering)
        attributes = {} if attributes is None else attributes

        response = client.publish(channel.path, data=data, ordering_key=ordering_key, **attributes)
        message_id: str = await asyncio.wrap_future(response)
        logger.debug(f"We sent {data!r} with metadata {attributes} to {channel.path}")
        return message_id

    def _get_listener(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> StreamingListener:
        key = (subscription.path, callbacks)
        listener = self._listeners.get(key)
        if listener is None:
            listener = StreamingListener(client=SubscriberClient())
            self._listeners[key] = listener
        return listener

    def install_delivery_handler(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> None:
        listener = self._get_listener(subscription, callbacks)
        listener.callbacks = callbacks
        if listener.future is not None:
            return

        flow_control = subscription.flow_control
        logger.info(f"Listening for messages on {subscription.path}")
        listener.future = listener.client.subscribe(
            subscription.path,
            callback=partial(self._dispatch, listener),
            flow_control=FlowControl(
                max_messages=flow_control.max_messages,
                max_bytes=flow_control.max_bytes,
            ),
        )
        listener.future.add_done_callback(
            partial(self._on_stream_done, (subscription.path, callbacks), listener)
        )

    def install_error_handler(self, subscription: Subscription, callbacks: DeliveryCallbacks) -> None:
        listener = self._get_listener(subscription, callbacks)
        listener.error_callbacks = callbacks

    def remove_handlers(self, subscription: Subscription, callbacks: DeliveryCallbacks) -> None:
        listener = self._listeners.get((subscription.path, callbacks))
        if listener is None:
            return

        listener.callbacks = None
        listener.error_callbacks = None

    async def close_subscription(
        self, subscription: Subscription, callbacks: DeliveryCallbacks
    ) -> None:
        listener = self._listeners.pop((subscription.path, callbacks), None)
        if listener is None:
            return

        await anyio.to_thread.run_sync(self._shutdown_listener, listener)
        logger.debug(f"Subscriber for '{subscription.path}' has shutdown.")

    async def delete_subscription(self, subscription: Subscription) -> None:
        client = self._get_subscriber_client()
        with suppress(NotFound):
            await anyio.to_thread.run_sync(
                partial(client.delete_subscription, subscription=subscription.path)
            )
            logger.info(f"Deleted subscription: {subscription.path}")

    async def shutdown(self) -> None:
        """Closes every listener and client held by the transport."""
        listeners = list(self._listeners.values())
        self._listeners.clear()
        for listener in listeners:
            await anyio.to_thread.run_sync(self._shutdown_listener, listener)

        for client in self._publisher_clients.values():
            client.stop()
        self._publisher_clients.clear()

        if self._subscriber_client is not None:
            self._subscriber_client.close()
            self._subscriber_client = None

    def _shutdown_listener(self, listener: StreamingListener) -> None:
        if listener.future is not None:
            logger.debug("Sending cancel streaming pull command.")
            listener.future.cancel()
        listener.client.close()

    def _dispatch(self, listener: StreamingListener, pubsub_message: PubSubMessage) -> None:
        callbacks = listener.callbacks
        if callbacks is None:
            pubsub_message.nack()
            return

        message = self._translate_message(pubsub_message)
        asyncio.run(callbacks.on_message(message))

    def _on_stream_done(
        self,
        key: tuple[str, DeliveryCallbacks],
        listener: StreamingListener,
        future: StreamingPullFuture,
    ) -> None:
        # A listener still registered here ended on its own, not through close_subscription.
        if self._listeners.pop(key, None) is not None:
            listener.client.close()

        error = None
        if not future.cancelled():
            error = future.exception()

        if error is not None and listener.error_callbacks is not None:
            asyncio.run(listener.error_callbacks.on_error(error))

        if listener.callbacks is not None:
            listener.callbacks.on_close()

    def _translate_message(self, message: PubSubMessage) -> Message:
        delivery_attempt = 0
        if message.delivery_attempt is not None:
            delivery_attempt = message.delivery_attempt

        return Message(
            id=message.message_id,
            data=message.data,
            attributes=dict(message.attributes),
            acknowledger=PubSubAcknowledger(message),
            ack_id=message.ack_id,
            size=message.size,
            delivery_attempt=delivery_attempt,
            ordering_key=message.ordering_key,
        )
