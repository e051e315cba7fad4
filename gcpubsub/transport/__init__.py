from gcpubsub.transport.base import DeliveryCallbacks, Transport
from gcpubsub.transport.pubsub import PubSubTransport

__all__ = ["DeliveryCallbacks", "Transport", "PubSubTransport"]
