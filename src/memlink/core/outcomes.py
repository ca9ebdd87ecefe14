"""Caller-facing result type for store operations"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

OK = "OK"
NOT_FOUND = "NOT_FOUND"
ERROR = "ERROR"


@dataclass
class ToolOutcome:
    """
    Structured outcome of one store operation.

    Outcome states:
    - OK: Operation succeeded, data holds the payload
    - NOT_FOUND: A referenced key does not exist; a normal, reportable result
    - ERROR: Validation failure, storage failure or unknown operation;
      error_type says which
    """

    status: str  # OK | NOT_FOUND | ERROR
    message: str
    data: Optional[Dict[str, Any]] = None
    error_type: Optional[str] = None  # validation_error | storage_error | unknown_operation

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "ToolOutcome":
        return cls(status=OK, message=message, data=data or {})

    @classmethod
    def not_found(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "ToolOutcome":
        return cls(status=NOT_FOUND, message=message, data=data or {})

    @classmethod
    def error(cls, error_type: str, message: str) -> "ToolOutcome":
        return cls(status=ERROR, message=message, error_type=error_type)

    @property
    def is_error(self) -> bool:
        return self.status == ERROR

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status, "message": self.message}
        if self.data is not None:
            result["data"] = self.data
        if self.error_type is not None:
            result["error_type"] = self.error_type
        return result
