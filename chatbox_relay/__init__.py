"""Relay speech-recognition text into the VRChat chatbox over OSC, gated on mic mute."""

from .config import RelayConfig
from .dispatch_queue import DispatchQueue, split_text
from .errors import (
    AddressInUse,
    ConfigurationInvalid,
    MalformedPacket,
    PermissionDenied,
    RelayError,
    SendFailed,
)
from .history import ChatHistory, HistoryEntry
from .mic_sync import MicSyncReceiver, MuteState, ReceiverState
from .realtime_gate import RealtimeGate
from .relay_engine import RelayEngine, compose_display_text
from .transmitter import ChatTransmitter

__version__ = "0.1.0"

__all__ = [
    "AddressInUse",
    "ChatHistory",
    "ChatTransmitter",
    "ConfigurationInvalid",
    "DispatchQueue",
    "HistoryEntry",
    "MalformedPacket",
    "MicSyncReceiver",
    "MuteState",
    "PermissionDenied",
    "RealtimeGate",
    "ReceiverState",
    "RelayConfig",
    "RelayEngine",
    "RelayError",
    "SendFailed",
    "compose_display_text",
    "split_text",
]
