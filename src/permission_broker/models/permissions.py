"""Permission wire models and prompt events.

The bridge process posts a PermissionRequest and receives a PermissionDecision,
serialized exactly as the permission-prompt tool contract expects:

    {"behavior": "allow", "updatedInput": {...}}
    {"behavior": "deny", "message": "..."}
"""

from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

TIMEOUT_MESSAGE = "Permission prompt timed out"
ABANDONED_MESSAGE = "Permission prompt cancelled: permission server stopped"


class PermissionRequest(BaseModel):
    """Approval request posted by the bridge process.

    Attributes:
        tool_use_id: Caller's invocation id, carried as metadata only
        tool_name: Name of the tool asking for permission
        input: Tool input parameters (any JSON value)
    """

    tool_use_id: str = ""
    tool_name: str
    input: Any = Field(default_factory=dict)


class PermissionDecision(BaseModel):
    """Allow/deny verdict returned to the bridge process.

    An allow may carry a replacement input; a deny may carry a reason.
    Mixing the two shapes is rejected.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    behavior: Literal["allow", "deny"]
    updated_input: Any | None = Field(default=None, alias="updatedInput")
    message: str | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "PermissionDecision":
        if self.behavior == "allow" and self.message is not None:
            raise ValueError("allow decision cannot carry a message")
        if self.behavior == "deny" and self.updated_input is not None:
            raise ValueError("deny decision cannot carry updatedInput")
        return self

    @classmethod
    def allow(cls, updated_input: Any | None = None) -> "PermissionDecision":
        return cls(behavior="allow", updated_input=updated_input)

    @classmethod
    def deny(cls, message: str | None = None) -> "PermissionDecision":
        return cls(behavior="deny", message=message)

    @classmethod
    def timed_out(cls) -> "PermissionDecision":
        return cls.deny(TIMEOUT_MESSAGE)

    @classmethod
    def abandoned(cls) -> "PermissionDecision":
        return cls.deny(ABANDONED_MESSAGE)

    @classmethod
    def answer(cls, questions: list[dict[str, Any]], answers: dict[str, str]) -> "PermissionDecision":
        """Allow an AskUserQuestion call, handing the user's answers back as input.

        Args:
            questions: The questions from the original tool input
            answers: Mapping of question text to the chosen label(s)

        Returns:
            Allow decision whose updatedInput carries questions and answers
        """
        return cls.allow({"questions": questions, "answers": answers})

    @property
    def allowed(self) -> bool:
        return self.behavior == "allow"

    def to_wire(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class PromptEvent:
    """Notification payload for a pending permission prompt.

    Attributes:
        prompt_id: Broker-generated correlation key
        session_id: Session id at the time the prompt was emitted
        tool_name: Tool asking for permission
        input: Tool input parameters
    """

    prompt_id: str
    session_id: str
    tool_name: str
    input: Any

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_id": self.prompt_id,
            "session_id": self.session_id,
            "tool_name": self.tool_name,
            "input": self.input,
        }
