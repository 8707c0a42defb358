# storefront/events.py
import json
import threading
import uuid
from typing import Any, Dict, List, Optional, Protocol, Tuple

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import EventPublishError

logger = structlog.get_logger(__name__)

USER_LOGGED_IN = "USER_LOGGED_IN"

Event = Tuple[str, Dict[str, Any], Dict[str, str]]


class Publisher(Protocol):
    def publish(self, event_type: str, payload: Dict[str, Any], metadata: Dict[str, str]) -> None: ...

    def close(self) -> None: ...


class InMemoryPublisher:
    """Keeps events in a list. ``fail_with`` makes every publish raise."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.events: List[Event] = []
        self.fail_with = fail_with
        self._lock = threading.Lock()

    def publish(self, event_type: str, payload: Dict[str, Any], metadata: Dict[str, str]) -> None:
        if self.fail_with is not None:
            raise EventPublishError(str(self.fail_with))
        with self._lock:
            self.events.append((event_type, payload, dict(metadata)))

    def of_type(self, event_type: str) -> List[Event]:
        return [e for e in self.events if e[0] == event_type]

    def close(self) -> None:
        pass


class LoggingPublisher:
    def publish(self, event_type: str, payload: Dict[str, Any], metadata: Dict[str, str]) -> None:
        logger.info("Event published", event_type=event_type, metadata=metadata)

    def close(self) -> None:
        pass


class SQSPublisher:
    """Sends each event as one SQS message; the event type and metadata
    travel as message attributes, the payload as the JSON body."""

    def __init__(self, client, queue_name: str):
        self.client = client
        self.queue_name = queue_name
        self._queue_url: Optional[str] = None

    @property
    def queue_url(self) -> str:
        if self._queue_url is None:
            self._queue_url = self.client.get_queue_url(QueueName=self.queue_name)["QueueUrl"]
        return self._queue_url

    def publish(self, event_type: str, payload: Dict[str, Any], metadata: Dict[str, str]) -> None:
        attributes = {"event_type": {"DataType": "String", "StringValue": event_type}}
        for key, value in metadata.items():
            attributes[key] = {"DataType": "String", "StringValue": str(value)}
        message = {
            "MessageBody": json.dumps(payload, default=str),
            "MessageAttributes": attributes,
        }
        if self.queue_name.endswith(".fifo"):
            message["MessageGroupId"] = event_type
            message["MessageDeduplicationId"] = uuid.uuid4().hex
        try:
            self.client.send_message(QueueUrl=self.queue_url, **message)
        except (BotoCoreError, ClientError) as exc:
            raise EventPublishError(f"unable to publish {event_type} event") from exc

    def close(self) -> None:
        self.client.close()


def build_publisher(settings: Settings) -> Publisher:
    if settings.event_publisher == "memory":
        return InMemoryPublisher()
    if settings.event_publisher == "sqs":
        client = boto3.client(
            "sqs",
            region_name=settings.aws_region,
            endpoint_url=settings.s3_endpoint,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )
        return SQSPublisher(client, settings.event_queue_name)
    return LoggingPublisher()
