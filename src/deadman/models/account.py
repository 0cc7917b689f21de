"""Account model: the owner of switches and the source of activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

from ._validation import require_count, require_text, require_unique_strings


class AccountDbParams(NamedTuple):
    """Positional parameters for the account upsert statement."""

    id: str
    tier: str
    last_check_in_at: int
    relay_urls: list[str]
    created_at: int


@dataclass(frozen=True, slots=True)
class Account:
    """Immutable snapshot of an account.

    The replication factor and quotas are not stored here; they are derived
    from ``tier`` through
    [TierConfig][deadman.services.common.configs.TierConfig] when needed.

    Attributes:
        id: Account identifier.
        tier: Billing tier name (``free``, ``premium``, ``lifetime``, ...).
        last_check_in_at: Unix timestamp of the most recent check-in.
        relay_urls: Ordered, de-duplicated relay URLs chosen by the user.
        created_at: Unix timestamp of account creation.
    """

    id: str
    tier: str
    last_check_in_at: int
    relay_urls: tuple[str, ...] = ()
    created_at: int = 0
    _db_params: AccountDbParams | None = field(
        default=None, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        require_text(self.id, "id")
        require_text(self.tier, "tier")
        require_count(self.last_check_in_at, "last_check_in_at")
        require_count(self.created_at, "created_at")
        require_unique_strings(self.relay_urls, "relay_urls")
        object.__setattr__(
            self,
            "_db_params",
            AccountDbParams(
                id=self.id,
                tier=self.tier,
                last_check_in_at=self.last_check_in_at,
                relay_urls=list(self.relay_urls),
                created_at=self.created_at,
            ),
        )

    def to_db_params(self) -> AccountDbParams:
        assert self._db_params is not None  # noqa: S101  # Always set in __post_init__
        return self._db_params
