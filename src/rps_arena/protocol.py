from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import IntEnum
from typing import Any, Literal

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
WINS_REQUIRED = 3
FEE_PERCENT_KEPT = 98
USDC_DECIMALS = 6


class Choice(IntEnum):
    ROCK = 1
    PAPER = 2
    SCISSORS = 3

    @property
    def label(self) -> str:
        return self.name.capitalize()


class MatchState(IntEnum):
    WAITING = 0
    ACTIVE = 1
    COMPLETE = 2
    CANCELLED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (MatchState.COMPLETE, MatchState.CANCELLED)

    @property
    def label(self) -> str:
        return self.name.capitalize()


class RoundPhase(IntEnum):
    COMMIT = 0
    REVEAL = 1
    COMPLETE = 2

    @property
    def label(self) -> str:
        return self.name.capitalize()


class Side(IntEnum):
    PLAYER1 = 1
    PLAYER2 = 2

    @property
    def opponent(self) -> "Side":
        return Side.PLAYER2 if self is Side.PLAYER1 else Side.PLAYER1


AdvanceResult = Literal["ok", "timeout_claimed", "match_ended"]


def parse_choice(value: str) -> Choice:
    choice = value.strip().lower()
    if choice in ("r", "rock"):
        return Choice.ROCK
    if choice in ("p", "paper"):
        return Choice.PAPER
    if choice in ("s", "scissors"):
        return Choice.SCISSORS
    raise ValueError(f"invalid choice {value!r}: must be rock|paper|scissors")


def choice_label(choice: Choice | None) -> str:
    return choice.label if choice is not None else "None"


def same_address(a: str | None, b: str | None) -> bool:
    if a is None or b is None:
        return False
    return a.lower() == b.lower()


def format_usdc(units: int) -> str:
    return f"{units / 10**USDC_DECIMALS:.2f}"


def prize_for(entry_fee: int) -> int:
    """Winner's payout for a two-player pot, net of the ledger's protocol fee."""
    return (entry_fee * 2 * FEE_PERCENT_KEPT) // 100


@dataclass(frozen=True)
class MatchSnapshot:
    player1: str
    player2: str | None
    entry_fee: int
    pot: int
    state: MatchState
    wins_p1: int
    wins_p2: int
    current_round: int
    created_at: int
    started_at: int

    def side_of(self, address: str) -> Side | None:
        if same_address(self.player1, address):
            return Side.PLAYER1
        if same_address(self.player2, address):
            return Side.PLAYER2
        return None

    def player(self, side: Side) -> str | None:
        return self.player1 if side is Side.PLAYER1 else self.player2

    def wins(self, side: Side) -> int:
        return self.wins_p1 if side is Side.PLAYER1 else self.wins_p2


@dataclass(frozen=True)
class RoundSnapshot:
    commit_p1: bytes | None
    commit_p2: bytes | None
    choice_p1: Choice | None
    choice_p2: Choice | None
    phase: RoundPhase
    phase_deadline: int
    winner: str | None

    @property
    def has_deadline(self) -> bool:
        return self.phase_deadline > 0

    def commitment(self, side: Side) -> bytes | None:
        return self.commit_p1 if side is Side.PLAYER1 else self.commit_p2

    def choice(self, side: Side) -> Choice | None:
        return self.choice_p1 if side is Side.PLAYER1 else self.choice_p2

    @property
    def both_revealed(self) -> bool:
        return self.choice_p1 is not None and self.choice_p2 is not None


@dataclass(frozen=True)
class RoundResult:
    round: int
    my_choice: str
    opponent_choice: str
    winner: Literal["You", "Opponent", "Draw"]


@dataclass(frozen=True)
class Score:
    player: int = 0
    opponent: int = 0


@dataclass(frozen=True)
class MatchOutcome:
    match_id: int
    won: bool
    score: Score
    rounds: list[RoundResult] = field(default_factory=list)
    prize: str = "0.00"
    opponent: str | None = None
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# --- Errors ---


class ArenaError(Exception):
    """Base class for failures surfaced to callers of the arena client."""


class TransactionFailed(ArenaError):
    def __init__(self, action: str, tx_hash: str | None = None) -> None:
        self.action = action
        self.tx_hash = tx_hash
        suffix = f": {tx_hash}" if tx_hash else ""
        super().__init__(f"{action} transaction failed{suffix}")


class MissingSecretError(ArenaError):
    def __init__(self, key: object) -> None:
        self.key = key
        super().__init__(f"No stored secret for {key}; the round cannot be revealed by this client")


class WaitTimeoutError(ArenaError, TimeoutError):
    """Local wait budget ran out; not the same thing as an on-chain deadline lapsing."""


class LedgerReadError(ArenaError):
    pass


class NotAPlayerError(ArenaError):
    pass


class InsufficientFundsError(ArenaError):
    pass


class MatchStateError(ArenaError):
    pass
