"""Pydantic request/response models for the SonicSync HTTP API.

Separated from the route modules to keep routing logic distinct from data
contracts.  Field names follow the camelCase wire format of the audio bridge.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SonicDataModel(BaseModel):
    currentFrequency: float = Field(gt=0, allow_inf_nan=False)
    amplitude: float = Field(ge=0, allow_inf_nan=False)
    harmonicStack: list[float] = Field(default_factory=list)
    phase: float = Field(default=0.0, allow_inf_nan=False)
    coherenceIndex: float = Field(default=0.5, allow_inf_nan=False)
    timestamp: float = Field(allow_inf_nan=False)
    waveform: Literal["sine", "square", "sawtooth", "triangle"] = "sine"


class HarmonicDataRequest(BaseModel):
    sonicData: SonicDataModel
    userId: str = Field(min_length=1, max_length=128)
    sessionId: str | None = Field(default=None, max_length=128)
    mode: Literal["individual", "collective"] = "individual"


class EventRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class FeedbackRequest(BaseModel):
    coherence_index: float = Field(ge=0, le=1, allow_inf_nan=False)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    listening: bool
    session_id: str | None = None
    tracked_users: int
    collective_users: int
    pending_writes: int
    failed_writes: int


class PublishResponse(BaseModel):
    status: str
    event: str


class FeedbackResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    coherenceIndex: float
    gainModulation: float
    phaseShift: float
    recommendation: str | None = None


class HistoricalDataModel(BaseModel):
    count: int
    min: float
    max: float
    avg: float


class UserCoherenceResponse(BaseModel):
    userId: str
    realtimeCoherence: float | None = None
    historicalData: HistoricalDataModel | None = None


class CoherenceRecordModel(BaseModel):
    id: int | None = None
    userId: str
    sessionId: str
    frequencyHz: float | None = None
    coherenceIndex: float | None = None
    amplitude: float | None = None
    timestamp: str


class UserHistoryResponse(BaseModel):
    userId: str
    records: list[CoherenceRecordModel]
