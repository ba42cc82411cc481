from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from taskapi.results import Failure, Result, Success

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}


def json_response(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body),
        headers=dict(CORS_HEADERS),
    )


def error_response(status_code: int, message: str, code: str, **details: Any) -> JSONResponse:
    return json_response(status_code, {"error": {"code": code, "message": message}, **details})


def render(result: Result) -> JSONResponse:
    if isinstance(result, Success):
        return json_response(result.status_code, result.body)
    if isinstance(result, Failure):
        return error_response(result.status_code, result.message, result.kind.value, **result.details)
    raise TypeError(f"unsupported result type: {type(result).__name__}")
