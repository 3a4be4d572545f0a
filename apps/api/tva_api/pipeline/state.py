from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tva_api.pipeline.errors import PipelineError
from tva_api.time_utils import _utc_now


class Stage(str, Enum):
    ANALYZE = "analyze"
    VALIDATE = "validate"
    MATCH_RULES = "match_rules"
    WRITE_RECORD = "write_record"
    FORMAT = "format"
    END = "end"


STAGE_LABELS: dict[Stage, str] = {
    Stage.ANALYZE: "Analyzing image with AI vision",
    Stage.VALIDATE: "Validating image requirements",
    Stage.MATCH_RULES: "Searching motor vehicle rules",
    Stage.WRITE_RECORD: "Saving violation record",
    Stage.FORMAT: "Formatting results",
}


class Assessment(BaseModel):
    """
    Structured output of the vision stage.

    Field aliases are the keys the vision model is prompted to return.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: str = Field(alias="title")
    description: str = Field(default="", alias="description")
    violation_types: str = Field(default="", alias="violationTypes")
    region_match: bool = Field(alias="isIndia")
    vehicle_present: bool = Field(alias="vehicleDetected")
    violation_present: bool = Field(alias="violationDetected")
    plate_present: bool = Field(alias="licensePlateDetected")
    confidence: float = Field(ge=0.0, le=1.0, alias="confidenceLevel")
    vehicle_number: str | None = Field(default=None, alias="vehicleNumber")

    @field_validator("violation_types", mode="before")
    @classmethod
    def _join_label_list(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return ", ".join(str(v) for v in value)
        return value

    @field_validator("vehicle_number", mode="before")
    @classmethod
    def _blank_plate_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def violation_type_list(self) -> list[str]:
        return [t.strip() for t in self.violation_types.split(",") if t.strip()]

    @property
    def passes_detection(self) -> bool:
        return self.region_match and self.vehicle_present and self.violation_present and self.plate_present


class RuleMatch(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    rule_id: str = Field(alias="ruleId")
    title: str = Field(alias="ruleTitle")
    text: str = Field(alias="ruleText")
    section: str
    category: str
    fine_amount: int = Field(alias="fineAmount")
    similarity: float = Field(ge=0.0, le=1.0, alias="similarityScore")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class EventType(str, Enum):
    STAGE_START = "stage_start"
    STAGE_END = "stage_end"
    ERROR = "error"
    FINAL_RESULT = "final_result"


TERMINAL_EVENT_TYPES = frozenset({EventType.ERROR, EventType.FINAL_RESULT})


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: EventType
    stage: str | None = None
    payload: Any = None
    timestamp: datetime = Field(default_factory=_utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@dataclass
class RunState:
    image_bytes: bytes
    assessment: Assessment | None = None
    rule_matches: list[RuleMatch] = field(default_factory=list)
    record_id: str | None = None
    skip: bool = False
    failure: str | None = None
    formatted: dict[str, Any] | None = None


def next_stage(stage: Stage, state: RunState) -> Stage:
    """
    The fixed stage graph. A failed analysis or a skipped validation jumps to Format; no stage leads back.
    """
    if stage is Stage.ANALYZE:
        return Stage.FORMAT if state.failure else Stage.VALIDATE
    if stage is Stage.VALIDATE:
        return Stage.FORMAT if state.skip else Stage.MATCH_RULES
    if stage is Stage.MATCH_RULES:
        return Stage.WRITE_RECORD
    if stage is Stage.WRITE_RECORD:
        return Stage.FORMAT
    if stage is Stage.FORMAT:
        return Stage.END
    raise PipelineError(f"no transition out of stage {stage.value!r}")
