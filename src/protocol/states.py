from __future__ import annotations

from enum import Enum


class ProtocolState(str, Enum):
    IDLE = "idle"
    # user-decrypt flow
    COMPUTING = "computing"
    SIGNING = "signing"
    DECRYPTING = "decrypting"
    # coprocessor flow
    REQUESTING_DECRYPT = "requesting_decrypt"
    POLLING = "polling"
    # terminal
    MATCHED = "matched"
    NOT_MATCHED = "not_matched"
    REVEALED = "revealed"
    ERROR = "error"


IN_FLIGHT = frozenset(
    {
        ProtocolState.COMPUTING,
        ProtocolState.SIGNING,
        ProtocolState.DECRYPTING,
        ProtocolState.REQUESTING_DECRYPT,
        ProtocolState.POLLING,
    }
)

# A new run may start from these; ERROR needs an explicit retry first
STARTABLE = frozenset(
    {
        ProtocolState.IDLE,
        ProtocolState.MATCHED,
        ProtocolState.NOT_MATCHED,
        ProtocolState.REVEALED,
    }
)
