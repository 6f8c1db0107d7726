"""
Administrative ownership.

[SECURITY] The administrator is an explicit capability: every privileged
call passes its caller and the check runs on that call. Ownership moves in
two steps (nominate, then accept) so a typo cannot lock the sale.
"""

import logging
from typing import Optional

from sale.address import to_checksum
from sale.errors import InvalidAddress, Unauthorized

logger = logging.getLogger(__name__)


class Owned:
    """Owner capability with two-step transfer."""

    def __init__(self, owner: str):
        checksum_owner = to_checksum(owner)
        if checksum_owner is None:
            raise InvalidAddress(f"Invalid owner address: {owner!r}")
        self._owner = checksum_owner
        self._pending_owner: Optional[str] = None

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def pending_owner(self) -> Optional[str]:
        return self._pending_owner

    def is_owner(self, caller: str) -> bool:
        return to_checksum(caller) == self._owner

    def require_owner(self, caller: str) -> None:
        if not self.is_owner(caller):
            raise Unauthorized(f"Caller {caller!r} is not the owner")

    def _check_nomination(self, caller: str, new_owner: str) -> str:
        self.require_owner(caller)
        nominee = to_checksum(new_owner)
        if nominee is None:
            raise InvalidAddress(f"Invalid new owner: {new_owner!r}")
        if nominee == self._owner:
            raise InvalidAddress("New owner must differ from the current owner")
        return nominee

    def _nominate(self, caller: str, new_owner: str) -> str:
        nominee = self._check_nomination(caller, new_owner)
        self._pending_owner = nominee
        logger.info(f"[SALE] Ownership transfer proposed: {self._owner} -> {nominee}")
        return nominee

    def require_pending_owner(self, caller: str) -> None:
        if self._pending_owner is None or to_checksum(caller) != self._pending_owner:
            raise Unauthorized(f"Caller {caller!r} is not the pending owner")

    def _accept(self, caller: str) -> str:
        self.require_pending_owner(caller)
        previous, self._owner = self._owner, self._pending_owner
        self._pending_owner = None
        logger.info(f"[SALE] Ownership transferred: {previous} -> {self._owner}")
        return self._owner
