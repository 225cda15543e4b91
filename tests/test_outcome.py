from __future__ import annotations

from fakes import ME, OPPONENT, make_match
from outcome import RoundFragments, determine_match_winner, is_forfeit_shaped  # type: ignore[import-not-found]
from protocol import Choice, MatchState  # type: ignore[import-not-found]

C = b"\x11" * 32


def fragments(commit_p1=None, commit_p2=None, choice_p1=None, choice_p2=None) -> RoundFragments:
    return RoundFragments(commit_p1=commit_p1, commit_p2=commit_p2, choice_p1=choice_p1, choice_p2=choice_p2)


def complete(**kw):
    return make_match(state=MatchState.COMPLETE, **kw)


def test_normal_win_by_threshold() -> None:
    assert determine_match_winner(complete(wins_p1=3, wins_p2=2)) == ME
    assert determine_match_winner(complete(wins_p1=1, wins_p2=3)) == OPPONENT


def test_threshold_beats_fragments() -> None:
    last = fragments(commit_p2=C)
    assert determine_match_winner(complete(wins_p1=3, wins_p2=0), last) == ME


def test_commit_phase_forfeit() -> None:
    assert determine_match_winner(complete(), fragments(commit_p1=C)) == ME
    assert determine_match_winner(complete(wins_p1=2), fragments(commit_p2=C)) == OPPONENT


def test_reveal_phase_forfeit() -> None:
    assert determine_match_winner(complete(), fragments(C, C, Choice.ROCK, None)) == ME
    assert determine_match_winner(complete(wins_p1=1), fragments(C, C, None, Choice.PAPER)) == OPPONENT


def test_fallback_compares_counts_without_evidence() -> None:
    assert determine_match_winner(complete(wins_p1=2, wins_p2=1)) == ME
    assert determine_match_winner(complete(wins_p1=0, wins_p2=1), fragments()) == OPPONENT
    # Both committed and both revealed carries no forfeit signal either.
    assert determine_match_winner(complete(wins_p1=2, wins_p2=1), fragments(C, C, Choice.ROCK, Choice.ROCK)) == ME


def test_equal_counts_without_evidence_is_undetermined() -> None:
    assert determine_match_winner(complete(wins_p1=1, wins_p2=1)) is None
    assert determine_match_winner(complete(), fragments(C, C)) is None


def test_non_complete_match_has_no_winner() -> None:
    assert determine_match_winner(make_match(state=MatchState.ACTIVE, wins_p1=3)) is None
    assert determine_match_winner(make_match(state=MatchState.CANCELLED)) is None


def test_custom_threshold() -> None:
    assert determine_match_winner(complete(wins_p1=1, wins_p2=2), wins_required=2) == OPPONENT


def test_forfeit_shape() -> None:
    assert is_forfeit_shaped(complete(wins_p1=1, current_round=2))
    assert not is_forfeit_shaped(complete(wins_p1=3, current_round=3))
    assert not is_forfeit_shaped(complete(current_round=0))
    assert not is_forfeit_shaped(make_match(state=MatchState.ACTIVE))


def test_deterministic() -> None:
    match, last = complete(wins_p1=1, wins_p2=1), fragments(C, C, None, Choice.SCISSORS)
    assert {determine_match_winner(match, last) for _ in range(5)} == {OPPONENT}
