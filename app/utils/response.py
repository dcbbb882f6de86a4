from datetime import datetime
from enum import Enum
from typing import Any, Optional, Dict
from pydantic import BaseModel
from bson import ObjectId

class APIResponse(BaseModel):
    success: bool = True
    message: str = "Success"
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None

def jsonable(obj):
    """Make service payloads JSON-safe (ObjectId, datetimes, enums, nested containers)."""
    if isinstance(obj, ObjectId):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (list, tuple)):
        return [jsonable(item) for item in obj]
    if isinstance(obj, dict):
        return {k: jsonable(v) for k, v in obj.items()}
    return obj

def success_response(data: Any = None, message: str = "Success") -> APIResponse:
    return APIResponse(success=True, message=message, data=jsonable(data))

def error_response(message: str = "Error", code: str = "INTERNAL_ERROR", **details) -> APIResponse:
    return APIResponse(success=False, message=message, error={"code": code, **jsonable(details)})
