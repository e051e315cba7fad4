"""A messaging core for Google Cloud Pub/Sub: provisioning, publishing and listening."""

from gcpubsub.datastructures import Channel, Message, Subscription, SubscriberState
from gcpubsub.diagnostics import DiagnosticPayload, build_diagnostic_payload
from gcpubsub.provisioning import ChannelProvisioner
from gcpubsub.publisher import Publisher
from gcpubsub.retry import RetryPolicy, RetryRunner, retry
from gcpubsub.service import PubSubService, PubSubSettings
from gcpubsub.subscriber import Subscriber

__all__ = [
    "PubSubService",
    "PubSubSettings",
    "ChannelProvisioner",
    "Publisher",
    "Subscriber",
    "SubscriberState",
    "Channel",
    "Subscription",
    "Message",
    "RetryPolicy",
    "RetryRunner",
    "retry",
    "DiagnosticPayload",
    "build_diagnostic_payload",
]
