from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import StrEnum

CONTENT_TYPE_ATTRIBUTE = "contentType"
CONTENT_TYPE_JSON = "application/json"


class Acknowledger(ABC):
    """One-shot acknowledgement capability attached to a delivered message."""

    @abstractmethod
    def ack(self) -> None:
        pass

    @abstractmethod
    def nack(self) -> None:
        pass


@dataclass(frozen=True)
class Message:
    id: str
    data: bytes
    attributes: dict[str, str]
    acknowledger: Acknowledger = field(repr=False, compare=False)
    ack_id: str = ""
    size: int = 0
    delivery_attempt: int = 0
    ordering_key: str = ""

    @property
    def content_type(self) -> str | None:
        if not self.attributes:
            return None
        return self.attributes.get(CONTENT_TYPE_ATTRIBUTE)


@dataclass(frozen=True)
class CallRetrySettings:
    """Transport-level retry of transient failures on a single remote call."""

    initial_delay_secs: float = 0.1
    delay_multiplier: float = 4.0
    max_delay_secs: float = 60.0
    rpc_timeout_secs: float = 60.0
    total_timeout_secs: float = 600.0


@dataclass(frozen=True)
class MessageControlFlowPolicy:
    max_messages: int = 1000
    max_bytes: int = 100 * 1024 * 1024


@dataclass(frozen=True)
class MessageRetryPolicy:
    min_backoff_delay_secs: int = 1
    max_backoff_delay_secs: int = 60


@dataclass(frozen=True)
class DeadLetterPolicy:
    topic_name: str
    max_delivery_attempts: int = 5


@dataclass(frozen=True)
class ChannelOptions:
    call_retry: CallRetrySettings | None = None
    enable_message_ordering: bool = False


@dataclass(frozen=True)
class SubscriptionCreateOptions:
    ack_deadline_seconds: int = 60
    retry_backoff: MessageRetryPolicy | None = None
    dead_letter_policy: DeadLetterPolicy | None = None
    filter_expression: str = ""
    enable_message_ordering: bool = False
    enable_exactly_once_delivery: bool = False
    call_retry: CallRetrySettings | None = None


@dataclass(frozen=True)
class SubscriptionGetOptions:
    flow_control: MessageControlFlowPolicy = field(default_factory=MessageControlFlowPolicy)


@dataclass(frozen=True)
class PublishOptions:
    attributes: dict[str, str] | None = None
    ordering_key: str = ""


@dataclass(frozen=True)
class Channel:
    name: str
    path: str
    options: ChannelOptions = field(default_factory=ChannelOptions)


@dataclass(frozen=True)
class Subscription:
    name: str
    path: str
    channel: Channel
    ack_deadline_seconds: int = 60
    retry_backoff: MessageRetryPolicy = field(default_factory=MessageRetryPolicy)
    flow_control: MessageControlFlowPolicy = field(default_factory=MessageControlFlowPolicy)


class SubscriberState(StrEnum):
    PROVISIONED = "provisioned"
    LISTENING = "listening"
    CLOSED = "closed"
    DELETED = "deleted"
