from __future__ import annotations

from dataclasses import replace

from fakes import ME, OPPONENT, FakeClock, FakeLedger, empty_round, make_match
from leaderboard import Leaderboard  # type: ignore[import-not-found]
from protocol import MatchState  # type: ignore[import-not-found]


def arena() -> FakeLedger:
    ledger = FakeLedger(clock=FakeClock())
    ledger.matches[1] = make_match(state=MatchState.COMPLETE, wins_p1=3, wins_p2=1, current_round=4)
    # Opponent committed, we never did: forfeit at 1-0.
    ledger.matches[2] = make_match(state=MatchState.COMPLETE, wins_p1=1, current_round=2)
    ledger.rounds[(2, 2)] = replace(empty_round(), commit_p2=b"\x02" * 32)
    ledger.matches[3] = make_match(state=MatchState.ACTIVE)
    ledger.matches[4] = make_match(state=MatchState.COMPLETE, current_round=1)
    return ledger


def test_build_reconstructs_forfeits() -> None:
    board = Leaderboard.build(arena())

    me, opp = board.get(ME), board.get(OPPONENT)
    assert board.total_matches == 3
    assert (me.matches_played, me.matches_won, me.matches_lost) == (3, 1, 1)
    assert (opp.matches_played, opp.matches_won, opp.matches_lost) == (3, 1, 1)
    assert me.rounds_won == 4 and me.rounds_lost == 1


def test_unreadable_forfeit_round_falls_back_to_counts() -> None:
    ledger = arena()
    ledger.unreadable_rounds.add((2, 2))

    board = Leaderboard.build(ledger)

    assert board.get(ME).matches_won == 2
    assert board.get(OPPONENT).matches_won == 0


def test_money_columns() -> None:
    board = Leaderboard.build(arena())
    me = board.get(ME)

    assert me.total_wagered == 3_000_000
    assert me.total_earnings == 1_960_000
    assert me.profit_loss == -1_040_000
    assert me.win_rate == 33

    data = board.to_dict()
    assert data["total_volume"] == "6.00"
    assert data["players"][0]["profit_loss"] == "-1.04"
    assert data["players"][0]["win_rate"] == "33%"


def test_ranking_is_stable_on_ties() -> None:
    board = Leaderboard.build(arena())
    assert [p.address for p in board.players()] == [ME, OPPONENT]


def test_addresses_are_case_insensitive() -> None:
    board = Leaderboard()
    board.record(make_match(state=MatchState.COMPLETE, wins_p1=3), ME)
    board.record(make_match(player1=ME.lower(), state=MatchState.COMPLETE, wins_p1=3), ME.lower())

    assert board.get(ME.upper().replace("0X", "0x")).matches_won == 2
    assert len(board.players()) == 2


def test_format_table() -> None:
    assert Leaderboard().format_table() == "(no completed matches yet)"

    lines = Leaderboard.build(arena()).format_table().splitlines()
    assert lines[0].startswith("address")
    assert set(lines[1]) == {"-"}
    assert lines[2].startswith(ME)
    assert "33%" in lines[2]
    assert lines[2].endswith("-1.04")
