"""Structured diagnostic records for Pub/Sub failures."""

from typing import Any

from google.api_core.exceptions import GoogleAPICallError
from pydantic import BaseModel

from gcpubsub.datastructures import Channel, Message, Subscription

DIAGNOSTIC_LOG_KEY = "pubsub_info"


class DiagnosticPayload(BaseModel):
    subscription_name: str | None = None
    topic_name: str | None = None
    message_id: str | None = None
    message_content_type: str | None = None
    message_ack_id: str | None = None
    grpc_error_status: int | None = None
    grpc_error_metadata: dict[str, Any] | None = None
    grpc_error_details: str | None = None

    def as_log_extra(self) -> dict[str, dict[str, Any]]:
        return {DIAGNOSTIC_LOG_KEY: self.model_dump(exclude_none=True)}


def build_diagnostic_payload(
    *,
    channel: Channel | None = None,
    subscription: Subscription | None = None,
    message: Message | None = None,
    message_id: str | None = None,
    error: BaseException | None = None,
) -> DiagnosticPayload:
    """Extracts the identifiers of a failure for logging.

    The error message itself is never copied into the payload, since the
    error is logged alongside it.

    Args:
        channel: The channel involved, used only when no subscription is given.
        subscription: The subscription involved.
        message: The delivered message, if any.
        message_id: A bare message id, used when the message is not available.
        error: The failure. Only transport status errors contribute fields.
    """
    payload = DiagnosticPayload()

    if subscription is not None:
        payload.subscription_name = subscription.path
        payload.topic_name = subscription.channel.path
    elif channel is not None:
        payload.topic_name = channel.path

    if message is not None:
        payload.message_id = message.id
        payload.message_content_type = message.content_type
        if message.ack_id:
            payload.message_ack_id = message.ack_id
    elif message_id:
        payload.message_id = message_id

    if isinstance(error, GoogleAPICallError):
        payload.grpc_error_status = _get_status_code(error)
        payload.grpc_error_metadata = _get_metadata(error)
        details = "; ".join(str(detail) for detail in error.details)
        if details:
            payload.grpc_error_details = details

    return payload


def _get_status_code(error: GoogleAPICallError) -> int | None:
    if error.grpc_status_code is not None:
        return int(error.grpc_status_code.value[0])
    return error.code


def _get_metadata(error: GoogleAPICallError) -> dict[str, Any]:
    metadata: dict[str, Any] = dict(error.metadata or {})
    if error.reason:
        metadata.setdefault("reason", error.reason)
    if error.domain:
        metadata.setdefault("domain", error.domain)
    return metadata
