"""Engine error taxonomy.

Every failure the engine surfaces carries its kind so the transport layer can
pick a status code. Only the rollup create race is resolved internally.
"""


class EngineError(Exception):
    """Base class for all battle/rollup engine errors."""

    status_code = 500
    label = 'Internal Server Error'

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self):
        """Error payload for JSON responses."""
        payload = {'error': self.label, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(EngineError):
    """Malformed identifier or input value (period id, battle id, FP...)."""

    status_code = 400
    label = 'Validation Error'


class NotFoundError(EngineError):
    """Requested record does not exist and cannot be derived."""

    status_code = 404
    label = 'Not Found'


class ConflictError(EngineError):
    """Record already exists (e.g. battle already recorded for the clan)."""

    status_code = 409
    label = 'Conflict'


class ScheduleError(EngineError):
    """Battle id is not present in the battle schedule calendar."""

    status_code = 422
    label = 'Schedule Error'


class ConsistencyError(EngineError):
    """Stored data violates an invariant. Indicates a bug; never recovered."""

    status_code = 500
    label = 'Consistency Error'
