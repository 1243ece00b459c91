"""Error taxonomy for gap detection and result reconciliation."""


class GapScoutError(Exception):
    """Base class for all GapScout errors."""


class InputError(GapScoutError):
    """Caller supplied a missing or malformed input (rejected before any external call)."""


class UpstreamError(GapScoutError):
    """The Reasoning Service was unreachable, timed out, or returned an unparsable payload."""


class ValidationError(GapScoutError):
    """A field from an untrusted upstream response is missing or out of range."""


class ConflictError(GapScoutError):
    """A record changed between read and write (optimistic concurrency check failed)."""

    def __init__(self, collection: str, entity_id: int, expected_version: int | None = None):
        self.collection = collection
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{collection} #{entity_id} was modified concurrently "
            f"(expected version {expected_version})"
        )
