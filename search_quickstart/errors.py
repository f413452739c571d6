"""Errors raised by the quickstart when talking to the search service."""
from typing import Optional

from elasticsearch import ApiError, NotFoundError, TransportError

# Exceptions the elasticsearch client raises for failed or unreachable requests.
SERVICE_EXCEPTIONS = (ApiError, TransportError)


class ConfigurationMissingError(RuntimeError):
    """Endpoint or API key not configured."""

    def __init__(self, missing: list):
        self.missing = list(missing)
        super().__init__(
            f"Missing required env: {', '.join(self.missing)}. Set them in .env (see .env.example)."
        )


class SearchServiceError(RuntimeError):
    """A request to the search service failed or was rejected before sending."""

    def __init__(self, operation: str, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"{operation} failed{status}: {message}")


class IndexNotFoundError(SearchServiceError):
    pass


class DocumentNotFoundError(SearchServiceError):
    def __init__(self, operation: str, key: str, status_code: Optional[int] = 404):
        self.key = key
        super().__init__(operation, f"document {key!r} not found", status_code)


class InvalidIndexDefinitionError(SearchServiceError):
    def __init__(self, message: str):
        super().__init__("validate index definition", message)


class InvalidQueryError(SearchServiceError):
    def __init__(self, message: str):
        super().__init__("build query", message)


def from_transport_error(operation: str, err: Exception) -> SearchServiceError:
    """Wrap an elasticsearch client exception, keeping the HTTP status when there is one."""
    if isinstance(err, NotFoundError):
        return IndexNotFoundError(operation, _api_message(err), err.status_code)
    if isinstance(err, ApiError):
        return SearchServiceError(operation, _api_message(err), err.status_code)
    return SearchServiceError(operation, str(err))


def _api_message(err: ApiError) -> str:
    body = err.body if isinstance(err.body, dict) else {}
    reason = (body.get("error") or {}) if isinstance(body.get("error"), dict) else {}
    return reason.get("reason") or err.message or str(err)
