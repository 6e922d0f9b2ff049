"""
Error taxonomy and the FastAPI handler that renders it
"""
from fastapi import Request, status
from fastapi.responses import JSONResponse

from upload_service.metrics import API_ERRORS

UNMATCHED_ENDPOINT = "unmatched"


class ServiceError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Missing or malformed upload input"""
    status_code = status.HTTP_400_BAD_REQUEST


class UpstreamStorageError(ServiceError):
    """Object store I/O failure"""


class PersistenceError(ServiceError):
    """Database I/O failure"""


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class MalformedReferenceError(ServiceError):
    """A stored reference that does not parse back to bucket and key"""


def endpoint_label(request: Request) -> str:
    """Route template of the matched route, so ids never become label values"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ENDPOINT


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    API_ERRORS.labels(endpoint=endpoint_label(request), status_code=exc.status_code).inc()
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})
