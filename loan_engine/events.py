"""
Event System Module

Domain events raised by the loan aggregate are queued on the aggregate and
handed to an event sink only after the owning commit succeeds. Delivery
(email, push, notification rows) is the subscribers' concern.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, Dict, List, Any
from dataclasses import dataclass, field
from datetime import datetime, timezone
import uuid
import logging
from threading import RLock


class DomainEvent(Enum):
    """Domain events that can occur in the loan lifecycle"""

    # Loan events
    LOAN_APPROVED = "loan.approved"
    LOAN_REJECTED = "loan.rejected"
    LOAN_CANCELLED = "loan.cancelled"
    LOAN_FUNDED = "loan.funded"
    LOAN_DISBURSED = "loan.disbursed"
    LOAN_COMPLETED = "loan.completed"

    # Funding events
    FUNDING_ADDED = "funding.added"

    # Repayment events
    REPAYMENT_PAID = "repayment.paid"
    REPAYMENT_OVERDUE = "repayment.overdue"
    REPAYMENT_DUE = "repayment.due"


@dataclass
class EventPayload:
    """Payload for domain events"""
    event_type: DomainEvent
    entity_type: str
    entity_id: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        return {
            'event_type': self.event_type.value,
            'entity_type': self.entity_type,
            'entity_id': self.entity_id,
            'data': self.data,
            'timestamp': self.timestamp.isoformat(),
            'event_id': self.event_id
        }


class EventSink(ABC):
    """Anything that accepts published domain events"""

    @abstractmethod
    def publish(self, event: EventPayload) -> None:
        pass


class EventDispatcher(EventSink):
    """Central event dispatcher - publish/subscribe pattern"""

    def __init__(self):
        self._handlers: Dict[DomainEvent, List[Callable]] = {}
        self._global_handlers: List[Callable] = []  # catch-all handlers
        self._lock = RLock()
        self.logger = logging.getLogger("loan_engine.events")

    def subscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Subscribe to a specific event type"""
        with self._lock:
            if event_type not in self._handlers:
                self._handlers[event_type] = []
            self._handlers[event_type].append(handler)
            self.logger.debug(f"Subscribed handler {_handler_name(handler)} to {event_type.value}")

    def subscribe_all(self, handler: Callable) -> None:
        """Subscribe to ALL events"""
        with self._lock:
            self._global_handlers.append(handler)
            self.logger.debug(f"Subscribed global handler {_handler_name(handler)}")

    def unsubscribe(self, event_type: DomainEvent, handler: Callable) -> None:
        """Unsubscribe from a specific event type"""
        with self._lock:
            if event_type in self._handlers:
                try:
                    self._handlers[event_type].remove(handler)
                except ValueError:
                    self.logger.warning(f"Handler {_handler_name(handler)} was not subscribed to {event_type.value}")

    def publish(self, event: EventPayload) -> None:
        """Publish event to all subscribers"""
        with self._lock:
            specific = list(self._handlers.get(event.event_type, []))
            global_handlers = list(self._global_handlers)

        self.logger.debug(
            f"Publishing event {event.event_type.value} for {event.entity_type}:{event.entity_id}",
            extra={"extra": event.to_dict()}
        )

        # A failing subscriber must not undo a committed state change
        for handler in specific + global_handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in event handler {_handler_name(handler)} for {event.event_type.value}: {e}")


def _handler_name(handler: Callable) -> str:
    return getattr(handler, "__name__", repr(handler))


def create_loan_event(event_type: DomainEvent, loan, timestamp: datetime, **extra) -> EventPayload:
    """Create a loan-related event"""
    data = {
        "borrower_id": loan.borrower_id,
        "status": loan.status.value,
        "principal_amount": str(loan.principal.amount),
        "currency": loan.principal.currency.code,
    }
    data.update(extra)
    return EventPayload(
        event_type=event_type,
        entity_type="loan",
        entity_id=loan.id,
        data=data,
        timestamp=timestamp
    )


def create_repayment_event(event_type: DomainEvent, loan, repayment, timestamp: datetime, **extra) -> EventPayload:
    """Create a repayment-related event"""
    data = {
        "loan_id": loan.id,
        "borrower_id": loan.borrower_id,
        "installment_number": repayment.installment_number,
        "due_date": repayment.due_date.isoformat(),
        "amount": str(repayment.amount.amount),
        "currency": repayment.amount.currency.code,
    }
    data.update(extra)
    return EventPayload(
        event_type=event_type,
        entity_type="repayment",
        entity_id=repayment.id,
        data=data,
        timestamp=timestamp
    )
