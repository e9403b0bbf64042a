"""AdPilot — Pipeline error → HTTP translation for the API layer."""

from fastapi import HTTPException

from adpilot.core.errors import (
    BudgetNotConfirmedError,
    ErrorKind,
    OwnershipError,
    PublishPipelineError,
)

STATUS_BY_KIND = {
    ErrorKind.FATAL_CREDENTIAL: 401,
    ErrorKind.NO_CREDENTIAL: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 422,
    ErrorKind.FATAL_PAYLOAD: 400,
    ErrorKind.NOT_PUBLISHED: 409,
    ErrorKind.PRECONDITION: 409,
    ErrorKind.TRANSIENT_NETWORK: 503,
    ErrorKind.TRANSIENT_RATE_LIMIT: 503,
}


def http_error(e: PublishPipelineError) -> HTTPException:
    if isinstance(e, BudgetNotConfirmedError):
        status = 412
    elif isinstance(e, OwnershipError):
        status = 403
    else:
        status = STATUS_BY_KIND.get(e.kind, 400)
    return HTTPException(status_code=status, detail=e.to_dict())
