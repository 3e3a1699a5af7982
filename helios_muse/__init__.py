"""helios-muse: streamed replies from the Helios art companion.

Assembles the line-oriented event stream returned by the Helios chat
endpoint into one growing assistant message, and ships a small terminal
client around it.
"""

from __future__ import annotations

__version__ = "0.1.0"
__all__ = [
    "__version__",
    "StreamAssembler",
    "MessageAccumulator",
    "SessionState",
    "MuseClient",
    "MuseConfig",
    "Conversation",
    "TranscriptWriter",
]

from helios_muse.assembler import MessageAccumulator, SessionState, StreamAssembler
from helios_muse.client import MuseClient, MuseConfig
from helios_muse.conversation import Conversation
from helios_muse.transcript import TranscriptWriter
