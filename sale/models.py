"""
Sale records.

Plain dataclasses shared by the controller and the journal. Amounts are
ints; to_dict() keeps them as ints, the journal converts to TEXT.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
import time


@dataclass(frozen=True)
class SaleParameters:
    """Immutable construction parameters of a sale."""

    address: str
    token_address: str
    owner: str
    fund_recipient: str
    reserve_recipient: str
    start: int
    end: int
    exchange_rate: int
    cap: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SaleParameters":
        return cls(
            address=data["address"],
            token_address=data["token_address"],
            owner=data["owner"],
            fund_recipient=data["fund_recipient"],
            reserve_recipient=data["reserve_recipient"],
            start=int(data["start"]),
            end=int(data["end"]),
            exchange_rate=int(data["exchange_rate"]),
            cap=int(data["cap"]),
        )


@dataclass
class Purchase:
    """
    A settled (or settling) purchase.

    sender pays `contribution` value units; beneficiary and the reserve
    recipient are each credited `tokens`.
    """

    sender: str
    beneficiary: str
    contribution: int
    tokens: int
    counter: int
    transfer_ref: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sender": self.sender,
            "beneficiary": self.beneficiary,
            "contribution": self.contribution,
            "tokens": self.tokens,
            "counter": self.counter,
            "transfer_ref": self.transfer_ref,
            "created_at": self.created_at,
        }
