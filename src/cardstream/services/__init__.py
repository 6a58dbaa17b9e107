"""Streaming engine services."""

from .codec import decode_frame
from .orchestrator import StreamOrchestrator
from .resolver import ResourceResolver
from .sequencer import BufferedSequencer, OrderedSequencer, SequencerState
from .session import SessionState, StreamSession


__all__ = [
    "BufferedSequencer",
    "OrderedSequencer",
    "ResourceResolver",
    "SequencerState",
    "SessionState",
    "StreamOrchestrator",
    "StreamSession",
    "decode_frame",
]
