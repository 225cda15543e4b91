from __future__ import annotations

import logging
import secrets
from dataclasses import asdict, dataclass
from typing import Any, Callable, Literal

from clock import Clock
from ledger import Ledger
from outcome import RoundFragments, determine_match_winner
from phase_advancer import PhaseAdvancer
from protocol import (
    Choice,
    LedgerReadError,
    MatchOutcome,
    MatchSnapshot,
    MatchState,
    MatchStateError,
    NotAPlayerError,
    RoundPhase,
    RoundResult,
    Score,
    Side,
    WaitTimeoutError,
    choice_label,
    format_usdc,
    prize_for,
    same_address,
)
from settings import Timing

logger = logging.getLogger(__name__)

Chooser = Callable[[int], Choice]
RoundWinner = Literal["You", "Opponent", "Draw"]


def random_choice(_round_no: int) -> Choice:
    return secrets.choice(list(Choice))


@dataclass(frozen=True)
class RoundReport:
    match_id: int
    round: int
    your_choice: str
    result: Literal["complete", "timeout_win", "match_ended", "incomplete"]
    score: Score
    match_complete: bool
    opponent_choice: str | None = None
    round_winner: RoundWinner | None = None
    match_won: bool | None = None
    prize: str | None = None
    next_round: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


class MatchDriver:
    def __init__(self, ledger: Ledger, advancer: PhaseAdvancer, clock: Clock, timing: Timing | None = None) -> None:
        self.ledger = ledger
        self.advancer = advancer
        self.clock = clock
        self.timing = timing or Timing()

    def side_for(self, match: MatchSnapshot, match_id: int) -> Side:
        side = match.side_of(self.ledger.address)
        if side is None:
            raise NotAPlayerError(f"{self.ledger.address} is not a player in match #{match_id}")
        return side

    def play_match(self, match_id: int, choose: Chooser | None = None) -> MatchOutcome:
        """Play ``match_id`` to a terminal state and return the outcome.

        Moves come from ``choose(round_no)``; the default picks at random.
        """
        choose = choose or random_choice
        match = self._wait_until_active(match_id)
        side = self.side_for(match, match_id)
        logger.info("Playing match #%d as Player %d...", match_id, int(side))

        claimed_timeout = False
        start = self.clock.now()
        while True:
            if self.clock.now() - start > self.timing.match_timeout:
                raise WaitTimeoutError(f"Match #{match_id} did not finish within {self.timing.match_timeout:.0f}s")

            match = self.ledger.get_match(match_id)
            if match.state.is_terminal:
                return self.finalize(match_id, match, side, claimed_timeout)
            if match.state is MatchState.WAITING or match.current_round < 1:
                self.clock.sleep(self.timing.poll_interval)
                continue

            round_no = match.current_round
            rnd = self.ledger.get_round(match_id, round_no)
            if rnd.phase is RoundPhase.COMPLETE:
                # Ledger has not opened the next round yet.
                self.clock.sleep(self.timing.poll_interval)
                continue

            choice = None
            if rnd.phase is RoundPhase.COMMIT and rnd.commitment(side) is None:
                choice = choose(round_no)
            result = self.advancer.advance(match_id, round_no, side, choice)
            if result == "timeout_claimed":
                claimed_timeout = True

    def play_round(self, match_id: int, choice: Choice) -> RoundReport:
        """Play only the current round with a caller-supplied move."""
        match = self.ledger.get_match(match_id)
        if match.state is not MatchState.ACTIVE:
            raise MatchStateError(f"Match #{match_id} is not ACTIVE (current: {match.state.label})")
        side = self.side_for(match, match_id)
        round_no = match.current_round
        logger.info("Playing round %d with %s...", round_no, choice.label)

        result = self.advancer.advance(match_id, round_no, side, choice)
        if result == "timeout_claimed":
            self.clock.sleep(self.timing.settle_delay)
            match = self.ledger.get_match(match_id)
            complete = match.state is MatchState.COMPLETE
            return RoundReport(
                match_id=match_id,
                round=round_no,
                your_choice=choice.label,
                result="timeout_win",
                score=Score(match.wins(side), match.wins(side.opponent)),
                match_complete=complete,
                match_won=True if complete else None,
                prize=format_usdc(prize_for(match.entry_fee)) if complete else None,
            )

        rnd = self.ledger.get_round(match_id, round_no)
        match = self.ledger.get_match(match_id)
        score = Score(match.wins(side), match.wins(side.opponent))
        complete = match.state is MatchState.COMPLETE

        if match.state.is_terminal and rnd.phase is not RoundPhase.COMPLETE:
            # Closed mid-round: a forfeit claimed by the opponent, or a cancel.
            winner = determine_match_winner(match, RoundFragments.from_round(rnd)) if complete else None
            won = same_address(winner, self.ledger.address)
            return RoundReport(
                match_id=match_id,
                round=round_no,
                your_choice=choice.label,
                result="match_ended",
                score=score,
                match_complete=complete,
                match_won=won,
                prize=format_usdc(prize_for(match.entry_fee)) if won else "0.00",
            )

        if rnd.phase is not RoundPhase.COMPLETE:
            return RoundReport(
                match_id=match_id,
                round=round_no,
                your_choice=choice.label,
                result="incomplete",
                score=score,
                match_complete=complete,
            )

        won = score.player > score.opponent
        return RoundReport(
            match_id=match_id,
            round=round_no,
            your_choice=choice_label(rnd.choice(side)),
            result="complete",
            score=score,
            match_complete=complete,
            opponent_choice=choice_label(rnd.choice(side.opponent)),
            round_winner=self.winner_label(rnd.winner),
            match_won=won if complete else None,
            prize=(format_usdc(prize_for(match.entry_fee)) if won else "0.00") if complete else None,
            next_round=None if complete else match.current_round,
        )

    def finalize(self, match_id: int, match: MatchSnapshot, side: Side, claimed_timeout: bool) -> MatchOutcome:
        if match.state is MatchState.CANCELLED:
            logger.info("Match #%d was cancelled.", match_id)
            return MatchOutcome(match_id=match_id, won=False, score=Score(), prize="0.00", cancelled=True)

        my_wins = match.wins(side)
        opp_wins = match.wins(side.opponent)
        # The ledger may close a forfeited match at any score, even 0-0.
        won = claimed_timeout or my_wins > opp_wins
        prize = format_usdc(prize_for(match.entry_fee)) if won else "0.00"
        rounds = self.round_history(match_id, match.current_round, side)

        logger.info("Match complete! %s (%d-%d)", "YOU WON" if won else "You lost", my_wins, opp_wins)
        return MatchOutcome(
            match_id=match_id,
            won=won,
            score=Score(my_wins, opp_wins),
            rounds=rounds,
            prize=prize,
            opponent=match.player(side.opponent),
        )

    def round_history(self, match_id: int, final_round: int, side: Side) -> list[RoundResult]:
        """Re-read every round from the ledger, keeping only those both sides revealed."""
        results: list[RoundResult] = []
        for round_no in range(1, final_round + 1):
            try:
                rnd = self.ledger.get_round(match_id, round_no)
            except LedgerReadError as exc:
                logger.debug("Skipping unreadable round %d: %s", round_no, exc)
                continue
            if not rnd.both_revealed:
                continue
            results.append(
                RoundResult(
                    round=round_no,
                    my_choice=choice_label(rnd.choice(side)),
                    opponent_choice=choice_label(rnd.choice(side.opponent)),
                    winner=self.winner_label(rnd.winner),
                )
            )
        return results

    def winner_label(self, winner: str | None) -> RoundWinner:
        if winner is None:
            return "Draw"
        return "You" if same_address(winner, self.ledger.address) else "Opponent"

    def _wait_until_active(self, match_id: int) -> MatchSnapshot:
        start = self.clock.now()
        while True:
            match = self.ledger.get_match(match_id)
            if match.state is MatchState.ACTIVE and match.current_round >= 1:
                return match
            if match.state.is_terminal:
                return match
            if self.clock.now() - start >= self.timing.activation_timeout:
                # Keep going; the main loop tolerates WAITING and round 0.
                return match
            logger.info(
                "Waiting for match to become active (state=%s, round=%d)...", match.state.label, match.current_round
            )
            self.clock.sleep(self.timing.poll_interval)
