from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OperationStatus(str, Enum):
    STATUS_UNSPECIFIED = "STATUS_UNSPECIFIED"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    ABORTING = "ABORTING"
    ABORTED = "ABORTED"


class ApiModel(BaseModel):
    """Base for resources exchanged with the API in camelCase JSON"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class Operation(ApiModel):
    name: str
    status: OperationStatus = OperationStatus.STATUS_UNSPECIFIED
    operation_type: Optional[str] = None
    zone: Optional[str] = None
    detail: Optional[str] = None
    self_link: Optional[str] = None
    target_link: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class Cluster(ApiModel):
    name: str
    location: Optional[str] = None
    status: Optional[str] = None
    network: Optional[str] = None
    initial_node_count: Optional[int] = None


class FibonacciPollingConfig(BaseModel):
    initial_delay_ms: int = Field(default=1000, gt=0)
    max_attempts: int = Field(default=20, gt=0)
    max_delay_ms: Optional[int] = Field(default=None, gt=0)


class PollingOutcome(str, Enum):
    success = "success"
    given_up = "given_up"
    cancelled = "cancelled"


class OperationSnapshot(BaseModel):
    handle: str
    attempt: int
    status: OperationStatus
    next_delay_ms: Optional[int] = None
    elapsed_time: float


class PollResult(BaseModel):
    handle: str
    outcome: PollingOutcome
    attempts: int
    last_status: Optional[OperationStatus] = None
    delays_ms: List[int] = Field(default_factory=list)
    elapsed_time: float

    @property
    def succeeded(self) -> bool:
        return self.outcome is PollingOutcome.success

    def describe(self, action: str = "Operation") -> str:
        """Human readable summary, e.g. describe("Cluster creation")"""
        if self.outcome is PollingOutcome.success:
            return f"{action} completed."
        if self.outcome is PollingOutcome.given_up:
            return f"{action} not complete. max retries reached, giving up."
        return f"{action} not complete. polling cancelled after {self.attempts} attempts."
