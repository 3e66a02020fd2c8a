"""Booking and payment events published to RabbitMQ."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict

import pika
from pika.exceptions import AMQPError

from .config import get_settings

logger = logging.getLogger(__name__)

QUEUE_NAME = "hotel_events"


def publish_event(event: str, payload: Dict[str, Any]) -> bool:
    """Send ``event`` to the durable queue; failures are logged and reported as False."""
    settings = get_settings()
    if not settings.events_enabled:
        return False

    message = {"event": event, **payload}
    try:
        connection = pika.BlockingConnection(pika.ConnectionParameters(host=settings.broker_host))
        try:
            channel = connection.channel()
            channel.queue_declare(queue=QUEUE_NAME, durable=True)
            channel.basic_publish(
                exchange="",
                routing_key=QUEUE_NAME,
                body=json.dumps(message, default=str),
                properties=pika.BasicProperties(delivery_mode=2),
            )
        finally:
            connection.close()
    except AMQPError as exc:
        logger.error("Could not publish %s: %s", event, exc)
        return False
    logger.info("Published %s", event)
    return True
