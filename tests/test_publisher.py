import json
from datetime import datetime
from uuid import UUID, uuid4

import pytest
from pydantic import BaseModel, ValidationError

from gcpubsub.datastructures import Channel, PublishOptions
from gcpubsub.exceptions import GCPubSubException
from gcpubsub.publisher import Publisher
from tests.conftest import FakeTransport


class UserSchema(BaseModel):
    username: str
    age: int


class ComplexMessageSchema(BaseModel):
    event_id: UUID
    timestamp: datetime
    user: UserSchema


@pytest.fixture
def publisher(transport: FakeTransport, channel: Channel) -> Publisher:
    return Publisher(transport, channel)


class TestPublisher:
    @pytest.mark.asyncio
    async def test_publish_bytes(self, publisher: Publisher, transport: FakeTransport):
        message_id = await publisher.publish(
            b"hello", attributes={"origin": "tests"}, ordering_key="customer-1"
        )

        assert message_id == "1"
        assert transport.published == [
            ("projects/test-project/topics/orders", b"hello", {"origin": "tests"}, "customer-1")
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", ["not bytes", 10, None, {"a": 1}])
    async def test_publish_rejects_non_bytes(self, publisher: Publisher, data):
        with pytest.raises(ValidationError):
            await publisher.publish(data)

    @pytest.mark.asyncio
    async def test_publish_propagates_transport_errors(
        self, publisher: Publisher, transport: FakeTransport
    ):
        transport.publish_error = RuntimeError("connection lost")

        with pytest.raises(RuntimeError, match="connection lost"):
            await publisher.publish(b"hello")

    @pytest.mark.asyncio
    async def test_publish_structured_sets_content_type(
        self, publisher: Publisher, transport: FakeTransport
    ):
        attributes = {"contentType": "text/plain", "origin": "tests"}

        await publisher.publish_structured({"a": 1}, PublishOptions(attributes=attributes))

        _, data, sent_attributes, _ = transport.published[0]
        assert data == b'{"a":1}'
        assert sent_attributes == {"contentType": "application/json", "origin": "tests"}
        assert attributes["contentType"] == "text/plain"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "value",
        [
            {"key": "value", "nested": {"number": 1}},
            ["a", 1, None],
            "plain string",
            42,
            3.14,
            True,
        ],
    )
    async def test_publish_structured_json_values(
        self, publisher: Publisher, transport: FakeTransport, value
    ):
        await publisher.publish_structured(value)

        _, data, _, ordering_key = transport.published[0]
        assert json.loads(data) == value
        assert ordering_key == ""

    @pytest.mark.asyncio
    async def test_publish_structured_pydantic_model(
        self, publisher: Publisher, transport: FakeTransport
    ):
        value = ComplexMessageSchema(
            event_id=uuid4(),
            timestamp=datetime(2024, 1, 1, 12, 0, 0),
            user=UserSchema(username="john", age=30),
        )

        await publisher.publish_structured(value, PublishOptions(ordering_key="john"))

        _, data, _, ordering_key = transport.published[0]
        assert ComplexMessageSchema.model_validate_json(data) == value
        assert ordering_key == "john"

    @pytest.mark.asyncio
    async def test_publish_structured_rejects_unserializable(
        self, publisher: Publisher, transport: FakeTransport
    ):
        with pytest.raises(GCPubSubException, match="is not serializable"):
            await publisher.publish_structured(object())

        assert transport.published == []
