"""
Annotation protocol shared by the client plugin and the controller.

Three annotation keys on the target pod carry a request and its progress:

    privileged-command-container  container to act on (client)
    privileged-command-action     whitespace-delimited command (client)
    privileged-command-status     active (client) | in-progress | done | error (controller)
"""

from enum import Enum
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

ANNOTATION_EXECUTE_STATUS = "privileged-command-status"
ANNOTATION_EXECUTE_CONTAINER = "privileged-command-container"
ANNOTATION_EXECUTE_ACTION = "privileged-command-action"

PROTOCOL_KEYS = (
    ANNOTATION_EXECUTE_STATUS,
    ANNOTATION_EXECUTE_CONTAINER,
    ANNOTATION_EXECUTE_ACTION,
)


class CommandStatus(str, Enum):
    """Values of the privileged-command-status annotation."""

    ACTIVE = "active"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ERROR = "error"


def is_complete(annotations: Optional[Mapping[str, str]]) -> bool:
    """True when all three protocol annotations are present and non-empty."""
    if annotations is None:
        return False
    return all(annotations.get(key) for key in PROTOCOL_KEYS)


def get_status(annotations: Optional[Mapping[str, str]]) -> Optional[str]:
    """Return the raw status annotation, or None when idle."""
    if not annotations:
        return None
    return annotations.get(ANNOTATION_EXECUTE_STATUS) or None


class ActionRequest(BaseModel):
    """A privileged command request as read from the target pod's annotations."""

    container: str = Field(..., min_length=1, description="Target container name")
    action: str = Field(..., min_length=1, description="Whitespace-delimited command")
    status: str = Field(..., min_length=1, description="Current protocol status")

    @property
    def command_tokens(self) -> List[str]:
        """Command and arguments, split on whitespace."""
        return self.action.split()

    @classmethod
    def from_annotations(cls, annotations: Mapping[str, str]) -> "ActionRequest":
        return cls(
            container=annotations.get(ANNOTATION_EXECUTE_CONTAINER, ""),
            action=annotations.get(ANNOTATION_EXECUTE_ACTION, ""),
            status=annotations.get(ANNOTATION_EXECUTE_STATUS, ""),
        )

    def to_annotations(self) -> Dict[str, str]:
        return {
            ANNOTATION_EXECUTE_CONTAINER: self.container,
            ANNOTATION_EXECUTE_ACTION: self.action,
            ANNOTATION_EXECUTE_STATUS: self.status,
        }
