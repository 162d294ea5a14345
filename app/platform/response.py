from typing import Any, Optional

from fastapi import status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def api_response(
    *,
    data: Optional[Any] = None,
    message: str = "Operation successful",
    status_code: int = status.HTTP_200_OK,
    meta: Optional[dict] = None,
) -> JSONResponse:
    """
    Single source of truth for ALL API responses.
    Automatically sets status = "success" if < 400 else "error".
    `meta` carries pagination details for list endpoints.
    """
    status_str = "success" if status_code < 400 else "error"
    data = jsonable_encoder(data) if data is not None else {}

    content = {
        "status_code": status_code,
        "status": status_str,
        "message": message,
        "data": data,
    }
    if meta is not None:
        content["meta"] = jsonable_encoder(meta)

    return JSONResponse(status_code=status_code, content=content)


def page_meta(*, page: int, size: int, total: int) -> dict:
    pages = (total + size - 1) // size if size else 0
    return {"page": page, "size": size, "total": total, "pages": pages}
