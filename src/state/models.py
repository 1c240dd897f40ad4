from __future__ import annotations

from typing import Dict, List

from pydantic import BaseModel, Field


def pair_key(first: str, second: str) -> str:
    """Ordered pair key: "{first}:{second}", addresses lower-cased."""
    return f"{first.strip().lower()}:{second.strip().lower()}"


class ClientState(BaseModel):
    """
    Client-local markers serialized to JSON and encrypted at rest.

    Fields
    - voted: pairs "{voter}:{target}" last seen with a vote on the ledger.
      Only a hint for listings; decisions re-read the ledger first.
    - revealed: pairs "{initiator}:{counterparty}" whose contact record was
      already revealed, so a confirmed match is not re-spent.

    Nothing here is authoritative; the ledger is.
    """

    voted: Dict[str, bool] = Field(default_factory=dict, description="Known vote pairs")
    revealed: Dict[str, bool] = Field(
        default_factory=dict,
        description="Pairs whose contact record has been revealed",
    )

    @classmethod
    def empty(cls) -> "ClientState":
        return cls()

    def voted_targets(self, voter: str) -> List[str]:
        prefix = voter.strip().lower() + ":"
        return sorted(k[len(prefix):] for k, v in self.voted.items() if v and k.startswith(prefix))

    def is_revealed(self, initiator: str, counterparty: str) -> bool:
        return bool(self.revealed.get(pair_key(initiator, counterparty)))

    def mark_revealed(self, initiator: str, counterparty: str) -> None:
        self.revealed[pair_key(initiator, counterparty)] = True
