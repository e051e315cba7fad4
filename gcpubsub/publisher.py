"""Publisher logic."""

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, validate_call

from gcpubsub.datastructures import (
    CONTENT_TYPE_ATTRIBUTE,
    CONTENT_TYPE_JSON,
    Channel,
    PublishOptions,
)
from gcpubsub.exceptions import GCPubSubException
from gcpubsub.logger import logger
from gcpubsub.transport.base import Transport

JSON_TYPES = (dict, list, tuple, str, int, float, bool, type(None))


class Publisher:
    """Publishes messages on a single channel.

    Publishing is not retried here, since it is not idempotent from the
    broker's perspective. Wrap the calls with ``retry`` when needed.
    """

    def __init__(self, transport: Transport, channel: Channel):
        self.transport = transport
        self.channel = channel

    @validate_call(config=ConfigDict(strict=True))
    async def publish(
        self,
        data: bytes,
        attributes: dict[str, str] | None = None,
        ordering_key: str = "",
    ) -> str:
        try:
            message_id = await self.transport.publish(
                self.channel, data, attributes=attributes, ordering_key=ordering_key
            )
        except Exception:
            logger.exception(f"Publisher failure on topic {self.channel.path}", stacklevel=2)
            raise

        content_type = attributes.get(CONTENT_TYPE_ATTRIBUTE) if attributes else None
        if content_type:
            logger.info(f"Published message_id {message_id} with contentType {content_type}")
        else:
            logger.info(f"Published message_id {message_id}")

        return message_id

    async def publish_structured(self, value: Any, options: PublishOptions | None = None) -> str:
        """Publishes ``value`` as JSON, marking it with the JSON content type.

        The content type attribute always overrides the one given by the caller.
        """
        options = options or PublishOptions()
        attributes = dict(options.attributes) if options.attributes else {}
        attributes[CONTENT_TYPE_ATTRIBUTE] = CONTENT_TYPE_JSON

        data = self._serialize_message(value)
        return await self.publish(data, attributes=attributes, ordering_key=options.ordering_key)

    def _serialize_message(self, value: Any) -> bytes:
        if isinstance(value, BaseModel):
            json_data = value.model_dump_json(indent=None)
            return json_data.encode(encoding="utf-8")

        if isinstance(value, JSON_TYPES):
            json_data = json.dumps(value, indent=None, separators=(",", ":"))
            return json_data.encode(encoding="utf-8")

        raise GCPubSubException(
            f"The message {value!r} is not serializable. "
            "Please send as one of the following formats: BaseModel, dict, list, str or number."
        )
