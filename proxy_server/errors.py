"""
Error payloads returned by the gateway when it cannot relay an upstream response.
Upstream error bodies are never rewritten; these cover only failures on our side of the hop.
"""
from fastapi.responses import JSONResponse

AUTH_FAILED = "Failed to authenticate with Spotify."
REAUTH_FAILED = "Failed to re-authenticate with Spotify."
UPSTREAM_UNREACHABLE = "Failed to communicate with Spotify."
RETRY_UNREACHABLE = "Failed to communicate with Spotify during retry."

_ERROR_TITLES = {
    500: "Internal Server Error",
    503: "Service Unavailable",
}


def error_response(status_code: int, message: str) -> JSONResponse:
    """JSON error body: {"error": <status title>, "message": <detail>}."""
    return JSONResponse(
        status_code=status_code,
        content={"error": _ERROR_TITLES.get(status_code, "Error"), "message": message},
    )


def service_unavailable(message: str = AUTH_FAILED) -> JSONResponse:
    return error_response(503, message)


def internal_error(message: str = UPSTREAM_UNREACHABLE) -> JSONResponse:
    return error_response(500, message)
