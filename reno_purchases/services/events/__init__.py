from .event_publisher import EventPublisher, InvoiceConfirmedEvent, build_event_publisher

__all__ = ["EventPublisher", "InvoiceConfirmedEvent", "build_event_publisher"]
