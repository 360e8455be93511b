"""Result type shared by the services."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ServiceResult:
    """Every service call answers with one of these instead of raising."""
    success: bool
    message: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: Optional[str] = None, **data: Any) -> 'ServiceResult':
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, message: str, **data: Any) -> 'ServiceResult':
        return cls(success=False, message=message, data=data)

    def to_dict(self) -> dict:
        return {'success': self.success, 'message': self.message, **self.data}
