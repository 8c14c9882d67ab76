"""
Error envelope shared by routers and the app-level exception handlers.

Every failure body has the shape:
  {"ok": false, "error": "<CODE>", "message": "<human readable>"}
"""

from fastapi import HTTPException


def error_body(code: str, message: str) -> dict:
    return {"ok": False, "error": code, "message": message}


def api_error(status_code: int, code: str, message: str) -> HTTPException:
    """Build an HTTPException whose detail is the error envelope."""
    return HTTPException(status_code=status_code, detail=error_body(code, message))


def unauthorized() -> HTTPException:
    return api_error(401, "UNAUTHORIZED", "Login required.")


def not_found(message: str = "Resource not found.") -> HTTPException:
    return api_error(404, "NOT_FOUND", message)


def bad_request(message: str) -> HTTPException:
    return api_error(400, "BAD_REQUEST", message)
