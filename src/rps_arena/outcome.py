from __future__ import annotations

from dataclasses import dataclass

from protocol import WINS_REQUIRED, Choice, MatchSnapshot, MatchState, RoundSnapshot


@dataclass(frozen=True)
class RoundFragments:
    """The parts of a round that survive a forfeit: who committed and who revealed."""

    commit_p1: bytes | None
    commit_p2: bytes | None
    choice_p1: Choice | None
    choice_p2: Choice | None

    @classmethod
    def from_round(cls, rnd: RoundSnapshot) -> "RoundFragments":
        return cls(
            commit_p1=rnd.commit_p1,
            commit_p2=rnd.commit_p2,
            choice_p1=rnd.choice_p1,
            choice_p2=rnd.choice_p2,
        )


def is_forfeit_shaped(match: MatchSnapshot, wins_required: int = WINS_REQUIRED) -> bool:
    return (
        match.state is MatchState.COMPLETE
        and match.wins_p1 < wins_required
        and match.wins_p2 < wins_required
        and match.current_round > 0
    )


def determine_match_winner(
    match: MatchSnapshot,
    last_round: RoundFragments | None = None,
    wins_required: int = WINS_REQUIRED,
) -> str | None:
    """Return the address that won a COMPLETE match, or None if it cannot be told.

    The ledger does not record who won by forfeit. When neither side reached
    ``wins_required`` the last round's fragments decide: a lone committer won
    a commit-phase forfeit, a lone revealer won a reveal-phase forfeit.
    Failing that the round-win counts are compared.
    """
    if match.state is not MatchState.COMPLETE:
        return None

    if match.wins_p1 >= wins_required:
        return match.player1
    if match.wins_p2 >= wins_required:
        return match.player2

    if last_round is not None:
        p1_committed = last_round.commit_p1 is not None
        p2_committed = last_round.commit_p2 is not None

        if p1_committed and not p2_committed:
            return match.player1
        if p2_committed and not p1_committed:
            return match.player2

        if p1_committed and p2_committed:
            p1_revealed = last_round.choice_p1 is not None
            p2_revealed = last_round.choice_p2 is not None
            if p1_revealed and not p2_revealed:
                return match.player1
            if p2_revealed and not p1_revealed:
                return match.player2

    # Weak heuristic: counts can differ without any forfeit evidence.
    if match.wins_p1 > match.wins_p2:
        return match.player1
    if match.wins_p2 > match.wins_p1:
        return match.player2
    return None
