"""Error taxonomy for EMBER.

A coverage gap (no snapshot in the window, or no valid pixel under the
geometry) is not an exception: it is the missing-value sentinel.
"""


class EmberError(Exception):
    """Base class for EMBER errors."""


class MalformedEvent(EmberError):
    """An event whose ID has no geometry or whose timestamp cannot be parsed.

    Fails that event only; the batch continues.
    """

    def __init__(self, event_id, reason: str):
        super().__init__(f"event {event_id!r}: {reason}")
        self.event_id = event_id
        self.reason = reason


class SourceUnavailable(EmberError):
    """Transient failure reaching a backing raster catalog."""


class SchemaMismatch(EmberError):
    """Source configuration does not produce the expected output columns.

    Raised during registry validation, before any event is processed.
    """
