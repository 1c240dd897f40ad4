"""
Encryption backends for the match protocol.

Modules:
- base: EncryptionAdapter capability and shared relayer plumbing
- fhevm: user-authorized decrypt backend (relayer, signed grant)
- cofhe: coprocessor backend (ledger-requested decrypt, account permit)
- sealing: X25519/AES-GCM transport sealing
"""

from .base import EncryptedInput, EncryptionAdapter, RelayerApiError, RelayerError
from .cofhe import CofheAdapter
from .fhevm import FhevmAdapter

__all__ = [
    "CofheAdapter",
    "EncryptedInput",
    "EncryptionAdapter",
    "FhevmAdapter",
    "RelayerApiError",
    "RelayerError",
]
