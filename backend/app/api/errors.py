from __future__ import annotations

from fastapi import HTTPException

from app.domain.errors import RolloutError


def http_error(exc: RolloutError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())
