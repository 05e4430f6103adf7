"""
Azure Service Bus event publishing for confirmed purchase invoices.

Lets downstream systems react to posted purchases:
- Accounting systems can ingest the posted ledger rows
- Budget tracking can compare spend against material estimates
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, UTC
from typing import Optional

from loguru import logger

from ...core.config import Settings


@dataclass
class InvoiceConfirmedEvent:
    """
    Event published when a draft invoice is confirmed and posted to the ledger.
    """

    invoice_id: str
    project_id: str
    vendor: str
    invoice_number: str
    ledger_entry_count: int
    grand_total: float
    currency: str
    totals_mismatch_override: bool
    event_type: str = "InvoiceConfirmed"
    timestamp: Optional[str] = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.now(UTC).isoformat()

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        """JSON string used as the Service Bus message body"""
        return json.dumps(self.to_dict())


class EventPublisher:
    """
    Publishes events to Azure Service Bus (Queue or Topic).

    Usage:
        # Service Bus Queue
        from azure.servicebus import ServiceBusClient
        client = ServiceBusClient.from_connection_string(conn_str)
        sender = client.get_queue_sender(queue_name="invoice-events")
        publisher = EventPublisher(service_bus_sender=sender)

        # Disabled mode (no Service Bus configured)
        publisher = EventPublisher(service_bus_sender=None)
    """

    def __init__(
        self,
        service_bus_sender: Optional[object] = None,
        entity_name: str = "invoice-events"
    ):
        """
        Args:
            service_bus_sender: Azure Service Bus sender (ServiceBusSender) or None to disable
            entity_name: Service Bus queue or topic name
        """
        self.service_bus_sender = service_bus_sender
        self.entity_name = entity_name

    @property
    def enabled(self) -> bool:
        return self.service_bus_sender is not None

    def publish_invoice_confirmed(self, event: InvoiceConfirmedEvent) -> None:
        """
        Publish an invoice confirmed event to Service Bus.

        No-op when no sender is configured (local development, tests).
        """
        if self.service_bus_sender is None:
            return

        from azure.servicebus import ServiceBusMessage

        message = ServiceBusMessage(event.to_json(), content_type="application/json")
        self.service_bus_sender.send_messages(message)
        logger.debug(
            "Invoice confirmed event published",
            invoice_id=event.invoice_id,
            entity_name=self.entity_name,
        )


def build_event_publisher(settings: Settings) -> EventPublisher:
    """
    Create a publisher from settings.

    Without SERVICEBUS_CONNECTION_STRING the publisher runs in disabled mode.
    """
    if not settings.servicebus_connection_string:
        return EventPublisher(service_bus_sender=None, entity_name=settings.servicebus_entity_name)

    from azure.servicebus import ServiceBusClient

    client = ServiceBusClient.from_connection_string(settings.servicebus_connection_string)
    sender = client.get_queue_sender(queue_name=settings.servicebus_entity_name)
    logger.info("Service Bus event publishing enabled", entity_name=settings.servicebus_entity_name)
    return EventPublisher(service_bus_sender=sender, entity_name=settings.servicebus_entity_name)
