from google.api_core.exceptions import (
    Aborted,
    Cancelled,
    DeadlineExceeded,
    GatewayTimeout,
    InternalServerError,
    ResourceExhausted,
    ServiceUnavailable,
    Unknown,
)


class GCPubSubException(Exception):
    pass


class GCPubSubCLIException(GCPubSubException):
    pass


class RetryableError(GCPubSubException):
    """Raise inside a retried action to force a new attempt.

    It is retried even when the policy has ``retry_on_any_error`` disabled.
    """


class ProvisioningError(GCPubSubException):
    pass


class SubscriberStateError(GCPubSubException):
    pass


class SubscriptionNotFoundError(GCPubSubException):
    pass


class MessageHandlerError(GCPubSubException):
    pass


class DeserializationError(MessageHandlerError):
    pass


RETRYABLE_TRANSPORT_EXCEPTIONS = (
    Aborted,
    Cancelled,
    DeadlineExceeded,
    GatewayTimeout,
    InternalServerError,
    ResourceExhausted,
    ServiceUnavailable,
    Unknown,
)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, (RetryableError, *RETRYABLE_TRANSPORT_EXCEPTIONS))


def create_error(
    message: str,
    error: BaseException | None = None,
    error_class: type[GCPubSubException] = GCPubSubException,
) -> GCPubSubException:
    """Builds a new exception chained to ``error``.

    When ``message`` ends with a colon the original error text is appended.

    Args:
        message: The new error message.
        error: The original error, if any.
        error_class: The exception type to build.

    Returns:
        The new exception, with ``__cause__`` set to the original error.
    """
    if error is None:
        return error_class(message)

    if message.endswith(":"):
        message = f"{message} {error}"

    new_error = error_class(message)
    new_error.__cause__ = error
    return new_error
