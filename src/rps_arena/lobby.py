from __future__ import annotations

import logging
from typing import Any

from clock import Clock
from ledger import Ledger
from outcome import RoundFragments, determine_match_winner
from protocol import (
    InsufficientFundsError,
    LedgerReadError,
    MatchSnapshot,
    MatchState,
    MatchStateError,
    NotAPlayerError,
    RoundPhase,
    Side,
    choice_label,
    format_usdc,
    same_address,
)
from settings import Timing

logger = logging.getLogger(__name__)

OPEN_MATCH_SCAN = 50


def match_summary(match_id: int, match: MatchSnapshot) -> dict[str, Any]:
    return {
        "match_id": match_id,
        "player1": match.player1,
        "player2": match.player2,
        "entry_fee": format_usdc(match.entry_fee),
        "pot": format_usdc(match.pot),
        "state": match.state.label,
        "wins_p1": match.wins_p1,
        "wins_p2": match.wins_p2,
        "current_round": match.current_round,
        "created_at": match.created_at,
        "started_at": match.started_at,
    }


def find_open_matches(ledger: Ledger, clock: Clock, timing: Timing | None = None) -> list[dict[str, Any]]:
    """WAITING matches among the most recent ones that can still be joined."""
    timing = timing or Timing()
    counter = ledger.match_counter()
    start = counter - OPEN_MATCH_SCAN + 1 if counter > OPEN_MATCH_SCAN else 1
    now = clock.now()

    open_matches: list[dict[str, Any]] = []
    for match_id, match in sorted(ledger.get_matches(start, counter).items()):
        if match.state is not MatchState.WAITING:
            continue
        if now <= match.created_at + timing.join_timeout:
            open_matches.append(match_summary(match_id, match))
    return open_matches


def match_details(ledger: Ledger, match_id: int) -> dict[str, Any]:
    match = ledger.get_match(match_id)

    rounds: list[dict[str, Any]] = []
    last_round: RoundFragments | None = None
    for round_no in range(1, match.current_round + 1):
        try:
            rnd = ledger.get_round(match_id, round_no)
        except LedgerReadError:
            break
        rounds.append(
            {
                "round": round_no,
                "phase": rnd.phase.label,
                "choice_p1": choice_label(rnd.choice_p1),
                "choice_p2": choice_label(rnd.choice_p2),
                "winner": rnd.winner or "Draw",
                "phase_deadline": rnd.phase_deadline or None,
            }
        )
        last_round = RoundFragments.from_round(rnd)

    winner: str | None = None
    if match.state is MatchState.COMPLETE:
        winner = determine_match_winner(match, last_round) or "timeout"

    details = match_summary(match_id, match)
    details.update(
        {
            "player2": match.player2 or "None (waiting)",
            "pot": format_usdc(match.entry_fee * 2 if match.player2 else match.entry_fee),
            "winner": winner,
            "score": f"{match.wins_p1} - {match.wins_p2}",
            "rounds": rounds,
        }
    )
    return details


def round_status(ledger: Ledger, match_id: int, round_no: int | None = None) -> dict[str, Any]:
    """One round seen from the local player's side."""
    match = ledger.get_match(match_id)
    round_no = match.current_round if round_no is None else round_no
    if round_no < 1 or round_no > match.current_round:
        raise ValueError(f"Invalid round {round_no}. Current round is {match.current_round}.")

    rnd = ledger.get_round(match_id, round_no)
    side = match.side_of(ledger.address) or Side.PLAYER2
    opponent = side.opponent

    status: dict[str, Any] = {
        "match_id": match_id,
        "round": round_no,
        "phase": rnd.phase.label,
        "match_state": match.state.label,
        "score": {"player1": match.wins_p1, "player2": match.wins_p2},
    }
    if rnd.phase is RoundPhase.COMMIT:
        status["you_committed"] = rnd.commitment(side) is not None
        status["opponent_committed"] = rnd.commitment(opponent) is not None
    elif rnd.phase is RoundPhase.REVEAL:
        status["you_revealed"] = rnd.choice(side) is not None
        status["opponent_revealed"] = rnd.choice(opponent) is not None
    else:
        status["your_choice"] = choice_label(rnd.choice(side))
        status["opponent_choice"] = choice_label(rnd.choice(opponent))
        if rnd.winner is None:
            status["winner"] = "draw"
        else:
            status["winner"] = "you" if same_address(rnd.winner, ledger.address) else "opponent"
    if rnd.has_deadline:
        status["phase_deadline"] = rnd.phase_deadline
    return status


def enter_match(
    ledger: Ledger,
    clock: Clock,
    entry_fee: int,
    match_id: int | None = None,
    timing: Timing | None = None,
) -> tuple[int, Side]:
    """Resume, join, or create a match and return it with the local side."""
    timing = timing or Timing()

    if match_id is not None:
        match = ledger.get_match(match_id)
        if match.state is MatchState.ACTIVE:
            side = match.side_of(ledger.address)
            if side is None:
                raise NotAPlayerError(f"Match #{match_id} is ACTIVE but you are not a player in it.")
            logger.info("Resuming active match #%d...", match_id)
            return match_id, side
        if match.state is MatchState.WAITING:
            _require_balance(ledger, match.entry_fee)
            ledger.join_match(match_id, match.entry_fee)
            clock.sleep(timing.settle_delay)
            return match_id, Side.PLAYER2
        raise MatchStateError(f"Match #{match_id} is {match.state.label}. Cannot play.")

    _require_balance(ledger, entry_fee)
    logger.info("Looking for open matches...")
    joinable = [m for m in find_open_matches(ledger, clock, timing) if not same_address(m["player1"], ledger.address)]
    if joinable:
        target = joinable[0]["match_id"]
        logger.info("Found open match #%d (%s). Joining...", target, joinable[0]["entry_fee"])
        ledger.join_match(target, ledger.get_match(target).entry_fee)
        clock.sleep(timing.settle_delay)
        return target, Side.PLAYER2

    logger.info("No open matches found. Creating a new one...")
    new_id = ledger.create_match(entry_fee)
    logger.info("Match #%d created! Waiting for an opponent to join...", new_id)

    deadline = clock.now() + timing.join_timeout
    while clock.now() < deadline:
        match = ledger.get_match(new_id)
        if match.state is MatchState.ACTIVE:
            logger.info("Opponent joined! Starting game...")
            return new_id, Side.PLAYER1
        if match.state is MatchState.CANCELLED:
            raise MatchStateError(f"Match #{new_id} was cancelled before an opponent joined.")
        clock.sleep(timing.settle_delay)

    raise MatchStateError(
        f"No opponent joined match #{new_id} within {timing.join_timeout / 60:.0f} minutes. "
        "Cancel it or wait for someone to join."
    )


def claim_refund(ledger: Ledger, match_id: int) -> dict[str, Any]:
    match = ledger.get_match(match_id)
    if match.state is MatchState.ACTIVE:
        tx_hash = ledger.claim_match_expiry(match_id)
        return {"match_id": match_id, "status": "REFUNDED", "tx_hash": tx_hash, "reason": "Match expired"}
    if match.state is MatchState.WAITING:
        tx_hash = ledger.cancel_match(match_id)
        return {"match_id": match_id, "status": "REFUNDED", "tx_hash": tx_hash, "reason": "Match cancelled"}
    message = "Match already completed." if match.state is MatchState.COMPLETE else "Match already cancelled."
    return {"match_id": match_id, "status": "NO_ACTION", "message": message}


def claim_timeout(ledger: Ledger, match_id: int) -> str:
    match = ledger.get_match(match_id)
    if match.state is not MatchState.ACTIVE:
        raise MatchStateError(f"Match #{match_id} is not ACTIVE (current: {match.state.label})")
    rnd = ledger.get_round(match_id, match.current_round)
    if rnd.phase is RoundPhase.COMPLETE:
        raise MatchStateError(f"Round {match.current_round} is already complete. No timeout to claim.")
    logger.info("Claiming timeout win for match #%d round %d...", match_id, match.current_round)
    return ledger.claim_timeout(match_id)


def _require_balance(ledger: Ledger, amount: int) -> None:
    balance = ledger.token_balance()
    if balance < amount:
        raise InsufficientFundsError(
            f"Insufficient USDC balance. Have {format_usdc(balance)}, need {format_usdc(amount)}."
        )
