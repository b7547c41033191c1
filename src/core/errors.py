from __future__ import annotations


class TrackerError(Exception):
    pass


class NotFoundError(TrackerError):
    """Investment, transaction or dividend does not exist (or is not visible to the caller)."""

    def __init__(self, entity: str, entity_id: object):
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class ValidationFailure(TrackerError):
    """Input rejected before any computation; no partial result is produced."""
