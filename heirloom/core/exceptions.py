"""Ledger error taxonomy.

Each error carries the HTTP status code the request layer reports it with.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r})"


class ValidationError(LedgerError):
    """Missing or blank required fields."""

    status_code = 400


class NotFoundError(LedgerError):
    """Unknown application, environment or region."""

    status_code = 404

    def __init__(self, entity: str, key: str | int):
        super().__init__(f"{entity.capitalize()} not found")
        self.entity = entity
        self.key = key


class ConflictError(LedgerError):
    """The requested write collides with existing state."""

    status_code = 409


class VersionExistsError(ConflictError):
    """The version was already released for this application, environment and region."""

    def __init__(self, version: str):
        super().__init__("Version already exists for this application, environment, and region")
        self.version = version


class StateError(LedgerError):
    """The triple is not in a state that allows the requested transition."""

    status_code = 409


class NoActiveDeploymentError(StateError):
    def __init__(self):
        super().__init__("no active deployment found to rollback")


class NoHistoryError(StateError):
    def __init__(self):
        super().__init__("no previous deployments found to rollback to")


class VersionNotFoundError(StateError):
    status_code = 404

    def __init__(self, version: str):
        super().__init__(f"no deployment found with version {version}")
        self.version = version


class RollbackTargetMissingError(StateError):
    """The active row references a rollback target that is not in the history."""

    status_code = 500

    def __init__(self, target_id: int):
        super().__init__(f"rollback target deployment {target_id} not found")
        self.target_id = target_id


class StorageError(LedgerError):
    """Transaction or connection failure in the database layer."""

    status_code = 500
