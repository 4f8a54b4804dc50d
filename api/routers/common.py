import logging

from errors import (
    DeviceUnavailable,
    GenerationFailed,
    InvalidStateTransition,
    NotFound,
    PersistenceFailed,
    RenderCanceled,
    RenderFailed,
    RenderTimedOut,
    SongwriterError,
)
from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

STATUS_CODES = {
    InvalidStateTransition: 409,
    DeviceUnavailable: 503,
    GenerationFailed: 502,
    RenderFailed: 502,
    RenderTimedOut: 504,
    RenderCanceled: 409,
    PersistenceFailed: 500,
    NotFound: 404,
}


def get_session(request: Request):
    return request.app.state.session


def http_error(e: SongwriterError) -> HTTPException:
    for cls, status in STATUS_CODES.items():
        if isinstance(e, cls):
            return HTTPException(status, e.message)
    logger.error(f"Unmapped error: {e!r}")
    return HTTPException(500, e.message)
