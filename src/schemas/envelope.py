from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder


def envelope(data: Any = None, message: Optional[str] = None) -> Dict[str, Any]:
    """Wraps a payload in the {success, message, data} shape every route returns."""
    body: Dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    body["data"] = jsonable_encoder(data)
    return body


def error_body(message: str, **extra: Any) -> Dict[str, Any]:
    return {"success": False, "message": message, **extra}
