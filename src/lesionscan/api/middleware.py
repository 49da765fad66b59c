"""Request guards: optional API key authentication and upload size limits."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, UploadFile, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from lesionscan.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def settings_from_request(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject requests without the configured bearer key.

    Without LESIONSCAN_API_KEY every request passes.
    """
    expected = settings_from_request(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def read_upload(request: Request, file: UploadFile) -> bytes:
    """Read an uploaded image, enforcing LESIONSCAN_MAX_FILE_SIZE.

    Raises:
        HTTPException: 413 if the upload is larger than allowed, 422 if empty.
    """
    limit = settings_from_request(request).max_file_size
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=413,
            detail=f"Upload exceeds {limit} bytes",
        )
    if not data:
        raise HTTPException(
            status_code=422,
            detail="Uploaded file is empty",
        )
    return data
