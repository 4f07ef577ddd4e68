"""Ticket order pipeline: order API, fulfillment worker and analytics over RabbitMQ."""

__version__ = "1.0.0"
