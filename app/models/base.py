from enum import Enum
from typing import Any, ClassVar, Dict, Optional
from pydantic import BaseModel


def to_plain(value: Any) -> Any:
    """Convert enums and nested models into values BSON can store."""
    if isinstance(value, BaseModel):
        return to_plain(value.model_dump(mode="python"))
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_plain(v) for v in value]
    return value


class DocumentModel(BaseModel):
    """Base for models persisted as MongoDB documents.

    ``id_field`` names the attribute mapped to ``_id``; ``None`` lets MongoDB
    assign its own ObjectId, which is dropped again on load.
    """
    id_field: ClassVar[Optional[str]] = None

    def to_document(self) -> Dict[str, Any]:
        doc = to_plain(self.model_dump(mode="python"))
        id_field = type(self).id_field
        if id_field:
            doc["_id"] = doc.pop(id_field)
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        data = dict(doc)
        _id = data.pop("_id", None)
        if cls.id_field and _id is not None:
            data[cls.id_field] = str(_id)
        return cls.model_validate(data)
