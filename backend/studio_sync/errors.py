from typing import Dict, List


class StudioSyncError(Exception):
    """Base error for the ingestion and sync layers."""

    status_code = 500


class AuthError(StudioSyncError):
    status_code = 401


class PayloadValidationError(StudioSyncError):
    """Raised when a payload cannot be turned into a canonical order.

    `issues` lists every failing field as {"field": ..., "message": ...}, sorted by field.
    """

    status_code = 422

    def __init__(self, issues: List[Dict[str, str]]):
        self.issues = sorted(issues, key=lambda i: (i["field"], i["message"]))
        fields = ", ".join(i["field"] for i in self.issues)
        super().__init__(f"invalid payload: {fields}")


class PersistenceError(StudioSyncError):
    status_code = 500


class FetchError(StudioSyncError):
    """The sync client could not load the order list."""
