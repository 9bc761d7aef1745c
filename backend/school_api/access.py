from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .errors import PermissionDenied


class AccessContext(BaseModel):
    """Who is asking: the caller's role and the user id they act as."""

    model_config = ConfigDict(frozen=True)
    role: str
    owner_id: Optional[str] = None

    @property
    def is_parent(self) -> bool:
        return self.role == "parent"

    def can_view_student(self, student: Mapping[str, Any]) -> bool:
        if not self.is_parent:
            return True
        parent = student.get("parent_id")
        if isinstance(student.get("parent"), Mapping):
            parent = student["parent"].get("id", parent)
        return parent is not None and parent == self.owner_id


def ensure_can_view_student(access: AccessContext, student: Mapping[str, Any]) -> None:
    if not access.can_view_student(student):
        raise PermissionDenied("Access denied")
