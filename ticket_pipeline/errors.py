class PipelineError(Exception):
    """Base class for errors raised by the ticket pipeline."""


class BrokerUnavailable(PipelineError):
    """RabbitMQ could not be reached within the retry budget."""


class InvalidEventType(PipelineError):
    """An order named an event type we don't sell tickets for."""

    def __init__(self, event_type, valid_events):
        self.event_type = event_type
        self.valid_events = list(valid_events)
        super().__init__(f"Invalid event type: {event_type!r}")


class MessageParseError(PipelineError):
    """A queue message body could not be decoded into the expected record."""


class PublishFailure(PipelineError):
    """A message could not be handed to the broker."""
