"""Microsoft Graph bulk transport.

Exports:
    GraphBulkClient : HTTP client for the synchronization bulkUpload endpoint
    BulkOperation   : one outbound operation descriptor
    BulkResult      : one per-operation outcome
    GraphError family of exceptions
"""
from .client import GraphBulkClient, build_session
from .exceptions import GraphAPIError, GraphAuthError, GraphError, GraphTransportError
from .models import BulkOperation, BulkResult

__all__ = [
    "GraphBulkClient",
    "build_session",
    "BulkOperation",
    "BulkResult",
    "GraphError",
    "GraphAPIError",
    "GraphAuthError",
    "GraphTransportError",
]
