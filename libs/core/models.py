from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_TTL = timedelta(seconds=60)


class _EnvelopeModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Severity(str, Enum):
    fatal = "SEVERITY_FATAL"
    warning = "SEVERITY_WARNING"
    normal = "SEVERITY_NORMAL"


class Target(str, Enum):
    composite = "TARGET_COMPOSITE"
    composite_and_claim = "TARGET_COMPOSITE_AND_CLAIM"


class ConditionStatus(str, Enum):
    unknown = "STATUS_CONDITION_UNKNOWN"
    true = "STATUS_CONDITION_TRUE"
    false = "STATUS_CONDITION_FALSE"


class CredentialsType(str, Enum):
    data = "data"


class Resource(_EnvelopeModel):
    """A single structured document plus the envelope fields around it."""

    resource: Dict[str, Any] = Field(default_factory=dict)
    connection_details: Dict[str, str] = Field(default_factory=dict)
    ready: Optional[str] = None


class State(_EnvelopeModel):
    composite: Optional[Resource] = None
    resources: Dict[str, Resource] = Field(default_factory=dict)


class RequiredResources(_EnvelopeModel):
    items: List[Resource] = Field(default_factory=list)


class CredentialData(_EnvelopeModel):
    data: Dict[str, str] = Field(default_factory=dict)


class Credentials(_EnvelopeModel):
    credential_data: Optional[CredentialData] = None

    @property
    def type(self) -> Optional[CredentialsType]:
        if self.credential_data is not None:
            return CredentialsType.data
        return None


class RequestMeta(_EnvelopeModel):
    tag: str = ""


class ResponseMeta(_EnvelopeModel):
    tag: str = ""
    ttl: float = DEFAULT_TTL.total_seconds()


class Result(_EnvelopeModel):
    severity: Severity
    message: str
    target: Target = Target.composite


class Condition(_EnvelopeModel):
    type: str
    status: ConditionStatus
    reason: str
    message: Optional[str] = None
    target: Target = Target.composite


class RunFunctionRequest(_EnvelopeModel):
    meta: RequestMeta = Field(default_factory=RequestMeta)
    input: Dict[str, Any] = Field(default_factory=dict)
    observed: State = Field(default_factory=State)
    desired: State = Field(default_factory=State)
    credentials: Dict[str, Credentials] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    required_resources: Dict[str, RequiredResources] = Field(default_factory=dict)
    extra_resources: Dict[str, RequiredResources] = Field(default_factory=dict)


class RunFunctionResponse(_EnvelopeModel):
    meta: ResponseMeta = Field(default_factory=ResponseMeta)
    desired: State = Field(default_factory=State)
    results: List[Result] = Field(default_factory=list)
    conditions: List[Condition] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class ToolSpec(BaseModel):
    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(default_factory=dict)
    timeout_s: int = 30
