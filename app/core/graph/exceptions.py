"""Graph-specific exceptions for bulk upload error handling."""


class GraphError(Exception):
    """Base exception for all Microsoft Graph operations."""
    pass


class GraphAuthError(GraphError):
    """Access token could not be obtained from the identity platform."""
    pass


class GraphTransportError(GraphError):
    """The request never produced an HTTP response (network failure, timeout)."""
    pass


class GraphAPIError(GraphError):
    """HTTP error from the Graph API.
    
    Attributes:
        status_code: HTTP status code
        message: Error message from response
        endpoint: API endpoint that failed
    """
    
    def __init__(self, status_code: int, message: str, endpoint: str):
        self.status_code = status_code
        self.message = message
        self.endpoint = endpoint
        super().__init__(f"[{status_code}] {endpoint}: {message}")
