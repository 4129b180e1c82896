"""Core primitives shared across backend layers."""

from .events import EventBroker, EventPublisher, NullPublisher, BrokerPublisher

__all__ = ["EventBroker", "EventPublisher", "NullPublisher", "BrokerPublisher"]
