"""Wire models for the Graph synchronization bulkUpload endpoint."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class BulkOperation:
    """One operation inside a bulk request. Built per dispatch, never persisted."""
    id: str
    method: str
    path: str
    bulk_id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"id": self.id, "method": self.method, "path": self.path}
        if self.bulk_id is not None:
            body["bulkId"] = self.bulk_id
        if self.data is not None:
            body["data"] = self.data
        return body


@dataclass(frozen=True)
class BulkResult:
    """Per-operation outcome reported by the external system."""
    id: str
    status: int
    response: Any = None

    @property
    def succeeded(self) -> bool:
        return 200 <= self.status < 300

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BulkResult":
        try:
            status = int(data.get("status", 0))
        except (TypeError, ValueError):
            status = 0
        return cls(id=str(data.get("id", "")), status=status, response=data.get("response"))
