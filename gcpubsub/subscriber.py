"""Subscription listening and lifecycle.

A subscriber moves through ``PROVISIONED -> LISTENING -> CLOSED -> DELETED``.
Once closed or deleted an instance cannot listen again; create a new
``Subscriber`` for the same subscription to resume.
"""

import inspect
import json
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel

from gcpubsub.datastructures import (
    CONTENT_TYPE_JSON,
    Message,
    Subscription,
    SubscriberState,
)
from gcpubsub.diagnostics import build_diagnostic_payload
from gcpubsub.exceptions import (
    DeserializationError,
    MessageHandlerError,
    SubscriberStateError,
    SubscriptionNotFoundError,
    create_error,
)
from gcpubsub.logger import logger
from gcpubsub.transport.base import DeliveryCallbacks, Transport
from gcpubsub.types import ErrorHandler, MessageHandler, StructuredMessageHandler


def ensure_async_callable(handler: Callable[..., Any]) -> None:
    if inspect.iscoroutinefunction(handler):
        return

    if callable(handler) and inspect.iscoroutinefunction(getattr(handler, "__call__", None)):
        return

    raise TypeError(f"The handler {handler!r} must be an async callable.")


class SubscriptionCallbacks(DeliveryCallbacks):
    """Wraps a message handler with ack/nack and failure containment.

    Nothing but cancellation is ever raised out of ``on_message``: an
    exception escaping a transport delivery callback would take the whole
    process down.
    """

    def __init__(
        self,
        transport: Transport,
        subscription: Subscription,
        handler: MessageHandler,
        error_handler: ErrorHandler | None = None,
        on_closed: Callable[[], None] | None = None,
    ):
        self.transport = transport
        self.subscription = subscription
        self.handler = handler
        self.error_handler = error_handler
        self.on_closed = on_closed

    async def on_message(self, message: Message) -> None:
        with logger.contextualize(
            subscription_name=self.subscription.name,
            topic_name=self.subscription.channel.name,
            message_id=message.id,
        ):
            try:
                await self.handler(message)
            except DeserializationError as e:
                self._acknowledge(message, ack=False)
                await self._report(e, message)
                return
            except Exception as e:
                self._acknowledge(message, ack=False)
                error = create_error("messageHandler Error:", e, error_class=MessageHandlerError)
                await self._report(error, message)
                return
            except BaseException:
                self._acknowledge(message, ack=False)
                raise

            self._acknowledge(message, ack=True)
            logger.debug("Message successfully processed.")

    async def on_error(self, error: Exception) -> None:
        await self._report(error, None)

    def on_close(self) -> None:
        logger.info(f"Subscription closed: {self.subscription.path}")
        self.transport.remove_handlers(self.subscription, self)
        if self.on_closed is not None:
            self.on_closed()

    def _acknowledge(self, message: Message, ack: bool) -> None:
        try:
            if ack:
                message.acknowledger.ack()
            else:
                message.acknowledger.nack()
        except Exception:
            payload = build_diagnostic_payload(subscription=self.subscription, message=message)
            logger.exception("We failed to ack/nack the message", extra=payload.as_log_extra())

    async def _report(self, error: Exception, message: Message | None) -> None:
        if self.error_handler is None:
            self._default_error_handler(error, message)
            return

        try:
            result = self.error_handler(error, message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"The error handler failed while handling: {error}")

    def _default_error_handler(self, error: Exception, message: Message | None) -> None:
        payload = build_diagnostic_payload(
            subscription=self.subscription, message=message, error=error
        )
        if message is not None:
            logger.error(f"{error}", exc_info=error, extra=payload.as_log_extra())
        else:
            logger.error(f"Subscribe error: {error}", exc_info=error, extra=payload.as_log_extra())


class Subscriber:
    """Listens on a single subscription.

    Call ``close`` when other processes may keep using the subscription.
    Call ``delete`` only when this process is its sole consumer: other
    listeners silently stop receiving messages once it is deleted.
    """

    def __init__(self, transport: Transport, subscription: Subscription):
        self.transport = transport
        self.subscription = subscription
        self._state = SubscriberState.PROVISIONED
        self._callbacks: SubscriptionCallbacks | None = None

    @property
    def state(self) -> SubscriberState:
        return self._state

    @property
    def name(self) -> str:
        return self.subscription.name

    async def listen(self, handler: MessageHandler, error_handler: ErrorHandler | None = None) -> None:
        """Starts delivering messages of the subscription to ``handler``.

        A message is acked when the handler returns and nacked when it
        raises. Handler failures go to ``error_handler`` and are never
        raised to the caller.

        Raises:
            SubscriberStateError: The subscriber is closed, deleted or already listening.
            SubscriptionNotFoundError: The subscription does not exist.
            TypeError: The handler is not an async callable.
        """
        self._ensure_can_listen()
        ensure_async_callable(handler)

        if not await self.transport.subscription_exists(self.subscription):
            raise SubscriptionNotFoundError(f"Subscriber {self.subscription.path} does not exist")

        # The state may have changed while checking the subscription.
        self._ensure_can_listen()

        callbacks = SubscriptionCallbacks(
            transport=self.transport,
            subscription=self.subscription,
            handler=handler,
            error_handler=error_handler,
            on_closed=self._on_stream_closed,
        )
        self.transport.install_delivery_handler(self.subscription, callbacks)
        self.transport.install_error_handler(self.subscription, callbacks)
        self._callbacks = callbacks
        self._state = SubscriberState.LISTENING
        logger.info(f"Subscriber {self.subscription.path} is listening")

    async def listen_structured(
        self,
        handler: StructuredMessageHandler,
        error_handler: ErrorHandler | None = None,
        model: type[BaseModel] | None = None,
    ) -> None:
        """Listens for JSON messages, as sent by ``Publisher.publish_structured``.

        The handler receives the decoded value (or a ``model`` instance) and
        the message. Undecodable messages are nacked and the
        ``DeserializationError`` itself is passed to ``error_handler``.
        """
        ensure_async_callable(handler)

        async def structured_handler(message: Message) -> None:
            value = self._deserialize_message(message, model)
            await handler(value, message)

        await self.listen(structured_handler, error_handler)

    async def close(self) -> None:
        """Stops the deliveries. In-flight handlers are not awaited."""
        if self._state in (SubscriberState.CLOSED, SubscriberState.DELETED):
            logger.debug(f"Subscriber {self.subscription.path} is already {self._state}")
            return

        if self._callbacks is not None:
            self.transport.remove_handlers(self.subscription, self._callbacks)
            await self.transport.close_subscription(self.subscription, self._callbacks)
        self._callbacks = None
        self._state = SubscriberState.CLOSED
        logger.info(f"Subscriber {self.subscription.path} is closed")

    async def delete(self) -> None:
        """Closes the subscriber and deletes the subscription.

        Deletion is not immediate on the broker side: other processes
        listening on it may still receive messages for a while.
        """
        if self._state == SubscriberState.DELETED:
            return

        if self._state != SubscriberState.CLOSED:
            await self.close()

        if await self.transport.subscription_exists(self.subscription):
            await self.transport.delete_subscription(self.subscription)

        self._state = SubscriberState.DELETED
        logger.info(f"Subscriber {self.subscription.path} is deleted")

    def _on_stream_closed(self) -> None:
        if self._state != SubscriberState.LISTENING:
            return

        self._callbacks = None
        self._state = SubscriberState.CLOSED
        logger.warning(
            f"The delivery stream of {self.subscription.path} ended, the subscriber is closed"
        )

    def _ensure_can_listen(self) -> None:
        if self._state in (SubscriberState.CLOSED, SubscriberState.DELETED):
            raise SubscriberStateError(
                f"Subscriber {self.subscription.path} is {self._state}. "
                "Create a new subscriber to listen again."
            )

        if self._state == SubscriberState.LISTENING:
            raise SubscriberStateError(
                f"Subscriber {self.subscription.path} is already listening."
            )

    def _deserialize_message(self, message: Message, model: type[BaseModel] | None) -> Any:
        if message.content_type != CONTENT_TYPE_JSON:
            payload = build_diagnostic_payload(subscription=self.subscription, message=message)
            logger.warning(
                f"Message id {message.id} does not have json contentType",
                extra=payload.as_log_extra(),
            )

        try:
            if model is not None:
                return model.model_validate_json(message.data)
            return json.loads(message.data)
        except ValueError as e:
            raise create_error(
                f"Failed to parse JSON from message_id {message.id}:",
                e,
                error_class=DeserializationError,
            ) from e
