"""Event names and envelope constants shared by the bridge, core and UI."""

from __future__ import annotations

from typing import Any, Final

# Inbound (published by the audio bridge / session UI, consumed by the engine)
EVENT_HARMONIC_DATA: Final[str] = "sonic:harmonic:data"
EVENT_BRIDGE_CONNECTED: Final[str] = "sonic:bridge:connected"
EVENT_BRIDGE_DISCONNECTED: Final[str] = "sonic:bridge:disconnected"
EVENT_USER_STATE: Final[str] = "sonic:user:state"
EVENT_COHERENCE_REQUEST: Final[str] = "sonic:request:coherence"
EVENT_SESSION_START: Final[str] = "gaa:session:start"
EVENT_SESSION_END: Final[str] = "gaa:session:end"

# Outbound (published by the engine)
EVENT_BRIDGE_READY: Final[str] = "gaa:bridge:ready"
EVENT_COHERENCE_UPDATE: Final[str] = "gaa:coherence:update"
EVENT_COHERENCE_RESPONSE: Final[str] = "gaa:coherence:response"

INBOUND_EVENTS: tuple[str, ...] = (
    EVENT_HARMONIC_DATA,
    EVENT_BRIDGE_CONNECTED,
    EVENT_BRIDGE_DISCONNECTED,
    EVENT_USER_STATE,
    EVENT_COHERENCE_REQUEST,
    EVENT_SESSION_START,
    EVENT_SESSION_END,
)

OUTBOUND_EVENTS: tuple[str, ...] = (
    EVENT_BRIDGE_READY,
    EVENT_COHERENCE_UPDATE,
    EVENT_COHERENCE_RESPONSE,
)

ENGINE_SOURCE_ID: Final[str] = "gaa-core"
ESSENCE_LABELS: tuple[str, ...] = ("coherence", "feedback", "gaa")
ENGINE_CAPABILITIES: tuple[str, ...] = (
    "coherence-analysis",
    "feedback-modulation",
    "collective-sync",
)

MODE_INDIVIDUAL: Final[str] = "individual"
MODE_COLLECTIVE: Final[str] = "collective"
VALID_MODES: tuple[str, ...] = (MODE_INDIVIDUAL, MODE_COLLECTIVE)

WAVEFORMS: tuple[str, ...] = ("sine", "square", "sawtooth", "triangle")


def validate_harmonic_payload(payload: dict[str, Any]) -> tuple[bool, str]:
    """Shallow shape check of a ``sonic:harmonic:data`` payload."""
    if not isinstance(payload, dict):
        return False, "payload must be an object"
    user_id = payload.get("userId")
    if not isinstance(user_id, str) or not user_id.strip():
        return False, "userId is required"
    sonic_data = payload.get("sonicData")
    if not isinstance(sonic_data, dict):
        return False, "sonicData must be an object"
    mode = payload.get("mode", MODE_INDIVIDUAL)
    if mode not in VALID_MODES:
        return False, f"mode must be one of {', '.join(VALID_MODES)}"
    waveform = sonic_data.get("waveform", WAVEFORMS[0])
    if waveform not in WAVEFORMS:
        return False, f"sonicData.waveform must be one of {', '.join(WAVEFORMS)}"
    stack = sonic_data.get("harmonicStack", [])
    if not isinstance(stack, list):
        return False, "sonicData.harmonicStack must be an array"
    for index, value in enumerate(stack):
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            return False, f"sonicData.harmonicStack[{index}] must be numeric"
    return True, "ok"
