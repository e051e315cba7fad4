from unittest.mock import MagicMock

import pytest
from pydantic import ValidationError

from gcpubsub.datastructures import Message, SubscriberState, SubscriptionCreateOptions
from gcpubsub.exceptions import GCPubSubException
from gcpubsub.service import PubSubService, PubSubSettings
from gcpubsub.transport.pubsub import PubSubTransport
from tests.conftest import FakeTransport


@pytest.fixture
def service(transport: FakeTransport) -> PubSubService:
    return PubSubService(PubSubSettings(project_id="test-project"), transport=transport)


class TestPubSubSettings:
    def test_from_env(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("GCPUBSUB_PROJECT_ID", "env-project")
        monkeypatch.setenv("PUBSUB_EMULATOR_HOST", "localhost:8085")

        settings = PubSubSettings.from_env()

        assert settings.project_id == "env-project"
        assert settings.emulator_host == "localhost:8085"

    def test_from_env_falls_back_to_google_cloud_project(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("GCPUBSUB_PROJECT_ID", raising=False)
        monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "gcloud-project")

        assert PubSubSettings.from_env().project_id == "gcloud-project"

    def test_from_env_prefers_explicit_project(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("GCPUBSUB_PROJECT_ID", "env-project")

        assert PubSubSettings.from_env("explicit").project_id == "explicit"

    def test_from_env_without_project(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("GCPUBSUB_PROJECT_ID", raising=False)
        monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)

        with pytest.raises(GCPubSubException):
            PubSubSettings.from_env()

    def test_empty_project_id_is_rejected(self):
        with pytest.raises(ValidationError):
            PubSubSettings(project_id="")


class TestPubSubService:
    def test_default_transport(self):
        service = PubSubService(PubSubSettings(project_id="test-project"))

        assert isinstance(service.transport, PubSubTransport)
        assert service.project_id == "test-project"

    def test_get_topic_does_not_touch_the_broker(
        self, service: PubSubService, transport: FakeTransport
    ):
        topic = service.get_topic("orders")

        assert topic.path == "projects/test-project/topics/orders"
        assert transport.calls == []

    def test_get_topic_rejects_non_string_names(self, service: PubSubService):
        with pytest.raises(ValidationError):
            service.get_topic(123)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("topic_name", ["", "   "])
    async def test_create_publisher_rejects_blank_topic(
        self, service: PubSubService, topic_name: str
    ):
        with pytest.raises(GCPubSubException):
            await service.create_publisher(topic_name)

    @pytest.mark.asyncio
    async def test_publish_and_listen_structured(
        self, service: PubSubService, transport: FakeTransport
    ):
        received = []

        async def handler(value, message: Message) -> None:
            received.append(value)

        subscriber = await service.create_subscriber("orders", "orders-worker")
        await subscriber.listen_structured(handler)
        publisher = await service.create_publisher("orders")

        message_id = await publisher.publish_structured({"id": 1, "amount": 9.5})

        assert received == [{"id": 1, "amount": 9.5}]
        assert transport.delivered[0].id == message_id
        assert transport.delivered[0].acknowledger.acks == 1
        assert transport.created_channels == ["projects/test-project/topics/orders"]

    @pytest.mark.asyncio
    async def test_failing_handler_is_nacked(
        self, service: PubSubService, transport: FakeTransport
    ):
        async def handler(message: Message) -> None:
            raise ValueError("cannot process")

        error_handler = MagicMock()
        topic = await service.create_topic("orders")
        subscription = await service.create_subscription(
            topic, "orders-worker", SubscriptionCreateOptions(ack_deadline_seconds=20)
        )
        subscriber = await service.subscribe(subscription, handler, error_handler)
        publisher = await service.create_publisher(topic)

        await publisher.publish(b"order")

        assert subscriber.state == SubscriberState.LISTENING
        assert transport.delivered[0].acknowledger.nacks == 1
        error_handler.assert_called_once()

    @pytest.mark.asyncio
    async def test_closed_subscriber_stops_receiving(
        self, service: PubSubService, transport: FakeTransport
    ):
        received = []

        async def handler(message: Message) -> None:
            received.append(message.data)

        subscriber = await service.create_subscriber("orders", "orders-worker")
        await subscriber.listen(handler)
        publisher = await service.create_publisher("orders")

        await publisher.publish(b"first")
        await subscriber.close()
        await publisher.publish(b"second")

        assert received == [b"first"]
        assert subscriber.state == SubscriberState.CLOSED

    @pytest.mark.asyncio
    async def test_new_subscriber_resumes_closed_subscription(
        self, service: PubSubService, transport: FakeTransport
    ):
        subscriber = await service.create_subscriber("orders", "orders-worker")
        await subscriber.close()

        resumed = await service.create_subscriber("orders", "orders-worker")
        await resumed.listen(_noop)

        assert resumed.state == SubscriberState.LISTENING
        assert len(transport.created_subscriptions) == 1


async def _noop(message: Message) -> None:
    pass
