"""
Client state models and encrypted persistence.

The state is a set of local hints (known votes, revealed pairs); it is
serialized to JSON, encrypted with Fernet and stored in S3.
"""

from .models import ClientState, pair_key

__all__ = ["ClientState", "pair_key"]
