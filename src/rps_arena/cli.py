from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from clock import SystemClock
from ledger import ArenaLedger
from leaderboard import Leaderboard
from lobby import claim_refund, claim_timeout, enter_match, find_open_matches, match_details, round_status
from match_driver import MatchDriver
from phase_advancer import PhaseAdvancer
from protocol import ArenaError, Choice, MatchState, MatchStateError, format_usdc, parse_choice
from secret_store import SecretStore
from settings import Settings, load_settings

logger = logging.getLogger("wof")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="wof", description="On-chain Rock Paper Scissors agent")
    parser.add_argument("--secrets", default=None, help="Secret store file (default: $WOF_SECRETS_FILE or ~/.wof-rps-secrets.json)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="cmd", required=True)

    play = sub.add_parser("play", help="Find or create a match and play it to the end with random moves")
    play.add_argument("--entry-fee", type=float, default=1.0, help="Entry fee in USDC")
    play.add_argument("--match-id", type=int, default=None, help="Join or resume this match instead of matchmaking")

    create = sub.add_parser("create", help="Create a match and return immediately")
    create.add_argument("--entry-fee", type=float, default=1.0)

    join = sub.add_parser("join", help="Join a WAITING match without auto-play")
    join.add_argument("--match-id", type=int, required=True)

    rnd = sub.add_parser("round", help="Play the current round with your own move")
    rnd.add_argument("--match-id", type=int, required=True)
    rnd.add_argument("--choice", required=True, help="rock|paper|scissors")

    status = sub.add_parser("status", help="Show one round of a match")
    status.add_argument("--match-id", type=int, required=True)
    status.add_argument("--round", type=int, default=None)

    for name, help_text in (
        ("claim-timeout", "Claim a win because the opponent missed a deadline"),
        ("cancel", "Cancel a WAITING match you created"),
        ("refund", "Cancel or expire a stuck match and refund entry fees"),
        ("match", "Show match details"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--match-id", type=int, required=True)

    sub.add_parser("open", help="List open matches")
    sub.add_parser("my-matches", help="List match ids this wallet took part in")
    board = sub.add_parser("leaderboard", help="Rank players over all completed matches")
    board.add_argument("--json", action="store_true")
    sub.add_parser("balance", help="Show wallet balances")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[wof] %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_settings()
        ledger = _make_ledger(settings)
        logger.info("Agent: %s (%s)", ledger.address, settings.network.label)
        store = SecretStore.load(args.secrets or settings.secrets_path)
        result = _dispatch(args, settings, ledger, store)
    except (ArenaError, ValueError) as exc:
        _emit({"error": str(exc)})
        return 1

    if isinstance(result, str):
        print(result)
    else:
        _emit(result)
    return 0


def _dispatch(args: argparse.Namespace, settings: Settings, ledger: ArenaLedger, store: SecretStore) -> Any:
    clock = SystemClock()
    timing = settings.timing
    driver = MatchDriver(ledger, PhaseAdvancer(ledger, store, clock, timing), clock, timing)

    if args.cmd == "play":
        match_id, _ = enter_match(ledger, clock, _to_units(args.entry_fee), args.match_id, timing)
        return driver.play_match(match_id).to_dict()

    if args.cmd == "create":
        fee = _to_units(args.entry_fee)
        balance = ledger.token_balance()
        if balance < fee:
            raise ValueError(f"Insufficient USDC balance. Have {format_usdc(balance)}, need {format_usdc(fee)}.")
        match_id = ledger.create_match(fee)
        return {"match_id": match_id, "entry_fee": format_usdc(fee), "status": "WAITING"}

    if args.cmd == "join":
        match = ledger.get_match(args.match_id)
        if match.state is not MatchState.WAITING:
            raise MatchStateError(f"Match #{args.match_id} is not in WAITING state (current: {match.state.label})")
        ledger.join_match(args.match_id, match.entry_fee)
        clock.sleep(timing.settle_delay)
        updated = ledger.get_match(args.match_id)
        return {
            "match_id": args.match_id,
            "status": updated.state.label,
            "opponent": updated.player1,
            "current_round": updated.current_round,
        }

    if args.cmd == "round":
        choice: Choice = parse_choice(args.choice)
        return driver.play_round(args.match_id, choice).to_dict()

    if args.cmd == "status":
        return round_status(ledger, args.match_id, args.round)

    if args.cmd == "claim-timeout":
        tx_hash = claim_timeout(ledger, args.match_id)
        clock.sleep(timing.settle_delay)
        updated = ledger.get_match(args.match_id)
        return {"match_id": args.match_id, "tx_hash": tx_hash, "status": updated.state.label}

    if args.cmd == "cancel":
        tx_hash = ledger.cancel_match(args.match_id)
        return {"match_id": args.match_id, "tx_hash": tx_hash, "status": "CANCELLED"}

    if args.cmd == "refund":
        return claim_refund(ledger, args.match_id)

    if args.cmd == "match":
        return match_details(ledger, args.match_id)

    if args.cmd == "open":
        return {"matches": find_open_matches(ledger, clock, timing)}

    if args.cmd == "my-matches":
        return {"matches": ledger.player_matches()}

    if args.cmd == "leaderboard":
        lb = Leaderboard.build(ledger)
        return lb.to_dict() if args.json else lb.format_table()

    if args.cmd == "balance":
        return {
            "address": ledger.address,
            "eth": f"{ledger.native_balance() / 10**18:.4f}",
            "usdc": format_usdc(ledger.token_balance()),
        }

    raise SystemExit("unhandled command")


def _make_ledger(settings: Settings) -> ArenaLedger:
    return ArenaLedger(
        rpc_url=settings.rpc_url,
        private_key=settings.private_key,
        arena_address=settings.arena_address,
        usdc_address=settings.usdc_address,
        chain_id=settings.network.chain_id,
    )


def _to_units(usdc: float) -> int:
    if usdc <= 0:
        raise ValueError("--entry-fee must be positive")
    return round(usdc * 1_000_000)


def _emit(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))


if __name__ == "__main__":
    raise SystemExit(main())
