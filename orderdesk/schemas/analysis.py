from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from orderdesk.services.dialogue_state import (
    EntityType,
    Intent,
    parse_entity_type,
    parse_intent,
)


class Analysis(BaseModel):
    """Structured reading of one user message, as returned by the classifier."""

    intent: Intent = Intent.UNKNOWN
    entity_type: Optional[EntityType] = Field(
        default=None,
        validation_alias=AliasChoices("entity_type", "entityType"),
    )
    parameters: dict[str, Any] = Field(default_factory=dict)

    @field_validator("intent", mode="before")
    @classmethod
    def _coerce_intent(cls, value):
        return parse_intent(value)

    @field_validator("entity_type", mode="before")
    @classmethod
    def _coerce_entity_type(cls, value):
        return parse_entity_type(value)

    @field_validator("parameters", mode="before")
    @classmethod
    def _coerce_parameters(cls, value):
        return value if isinstance(value, dict) else {}

    @classmethod
    def unknown(cls) -> "Analysis":
        return cls()

    def param(self, name: str, default: Any = None) -> Any:
        """Parameter value, treating empty strings as missing."""
        value = self.parameters.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return default
        return value


class TaskMatch(BaseModel):
    task_id: int = Field(validation_alias=AliasChoices("task_id", "taskId"))
    confidence: float = 0.0
    reason: str = ""


class TaskMatchResult(BaseModel):
    matches: list[TaskMatch] = Field(default_factory=list)
    needs_confirmation: bool = False

    @property
    def best_match(self) -> Optional[TaskMatch]:
        return self.matches[0] if self.matches else None

    @classmethod
    def empty(cls) -> "TaskMatchResult":
        return cls()
