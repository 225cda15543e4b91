from __future__ import annotations

from dataclasses import replace

import pytest

from fakes import NETWORK, FakeClock, FakeLedger, Opponent, empty_round
from commit_reveal import commitment_hash  # type: ignore[import-not-found]
from phase_advancer import PhaseAdvancer  # type: ignore[import-not-found]
from protocol import (  # type: ignore[import-not-found]
    Choice,
    MatchState,
    MissingSecretError,
    RoundPhase,
    Side,
    WaitTimeoutError,
)
from secret_store import CommitKey, SecretStore, StoredSecret  # type: ignore[import-not-found]
from settings import Timing  # type: ignore[import-not-found]

TIMING = Timing(poll_interval=2.0, grace=5, phase_timeout=180.0)


def setup(opponent: Opponent | None = None, side: Side = Side.PLAYER1):
    clock = FakeClock()
    ledger = FakeLedger(clock=clock, opponent=opponent or Opponent())
    ledger.start_match(1, side)
    store = SecretStore()
    return clock, ledger, store, PhaseAdvancer(ledger, store, clock, TIMING)


def test_round_plays_through_to_complete() -> None:
    _, ledger, store, advancer = setup(Opponent(choice=Choice.SCISSORS))

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK) == "ok"

    assert ledger.rounds[(1, 1)].phase is RoundPhase.COMPLETE
    assert ledger.matches[1].wins_p1 == 1
    assert len(ledger.write_calls("commit")) == 1
    assert len(ledger.write_calls("reveal")) == 1
    assert store.get(CommitKey(NETWORK, 1, 1)) is None


def test_secret_is_persisted_before_commit_is_sent() -> None:
    clock = FakeClock()
    store = SecretStore()
    seen: list[StoredSecret | None] = []

    class RecordingLedger(FakeLedger):
        def commit(self, match_id: int, commitment: bytes) -> str:
            seen.append(store.get(CommitKey(NETWORK, match_id, 1)))
            return super().commit(match_id, commitment)

    ledger = RecordingLedger(clock=clock)
    ledger.start_match(1)
    PhaseAdvancer(ledger, store, clock, TIMING).commit(1, 1, Choice.PAPER)

    assert seen and seen[0] is not None
    assert seen[0].choice is Choice.PAPER


def test_commit_retry_reuses_stored_secret() -> None:
    _, ledger, store, advancer = setup()
    original = StoredSecret(Choice.PAPER, b"\x42" * 32)
    store.put(CommitKey(NETWORK, 1, 1), original)

    advancer.commit(1, 1, Choice.ROCK)

    (_, _, sent) = ledger.write_calls("commit")[0]
    assert sent == commitment_hash(Choice.PAPER, original.secret)
    assert store.get(CommitKey(NETWORK, 1, 1)) == original


def test_reveal_without_secret_fails_before_any_ledger_call() -> None:
    _, ledger, _, advancer = setup()
    ledger.calls.clear()

    with pytest.raises(MissingSecretError):
        advancer.reveal(1, 1)

    assert ledger.calls == []


def test_reveal_after_restart_uses_persisted_secret(tmp_path) -> None:
    clock = FakeClock()
    path = tmp_path / "secrets.json"
    ledger = FakeLedger(clock=clock, opponent=Opponent(choice=Choice.ROCK))
    ledger.start_match(1)

    first = PhaseAdvancer(ledger, SecretStore.load(path), clock, TIMING)
    first.commit(1, 1, Choice.PAPER)
    assert ledger.rounds[(1, 1)].phase is RoundPhase.REVEAL

    # New process: fresh store object loaded from disk, own choice not yet revealed.
    second = PhaseAdvancer(ledger, SecretStore.load(path), clock, TIMING)
    assert second.advance(1, 1, Side.PLAYER1) == "ok"

    (_, _, choice, _) = ledger.write_calls("reveal")[0]
    assert choice is Choice.PAPER
    assert ledger.matches[1].wins_p1 == 1
    assert SecretStore.load(path).get(CommitKey(NETWORK, 1, 1)) is None


def test_already_committed_round_is_not_recommitted() -> None:
    _, ledger, store, advancer = setup(Opponent(commits=False))
    advancer.commit(1, 1, Choice.ROCK)
    ledger.opponent.commits = True
    ledger.set_commit(1, Side.PLAYER2, b"\xee" * 32)

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.SCISSORS) == "ok"
    assert len(ledger.write_calls("commit")) == 1


def test_commit_requires_a_choice() -> None:
    _, _, _, advancer = setup()
    with pytest.raises(ValueError):
        advancer.advance(1, 1, Side.PLAYER1, None)


def test_claims_commit_timeout_after_grace() -> None:
    clock, ledger, _, advancer = setup(Opponent(commits=False))
    deadline = ledger.rounds[(1, 1)].phase_deadline

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK) == "timeout_claimed"

    assert len(ledger.write_calls("claim_timeout")) == 1
    assert clock.now() > deadline + TIMING.grace
    assert ledger.matches[1].state is MatchState.COMPLETE


def test_claims_reveal_timeout_and_secret_is_gone() -> None:
    _, ledger, store, advancer = setup(Opponent(reveals=False))

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK) == "timeout_claimed"

    assert ledger.rounds[(1, 1)].phase is RoundPhase.REVEAL
    assert store.get(CommitKey(NETWORK, 1, 1)) is None


def test_no_claim_inside_grace_window() -> None:
    clock, ledger, _, advancer = setup()
    rnd = ledger.rounds[(1, 1)]

    assert not advancer.deadline_passed(replace(rnd, phase_deadline=int(clock.now()) - 5))
    assert advancer.deadline_passed(replace(rnd, phase_deadline=int(clock.now()) - 6))
    assert not advancer.deadline_passed(replace(rnd, phase_deadline=0))


def test_failed_claim_keeps_polling() -> None:
    _, ledger, _, advancer = setup(Opponent(commits=False))
    ledger.fail_claims = 1

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK) == "timeout_claimed"
    assert len(ledger.write_calls("claim_timeout")) == 2


def test_failed_claim_then_opponent_acts() -> None:
    clock, ledger, _, advancer = setup(Opponent(commits=False, choice=Choice.SCISSORS))
    ledger.fail_claims = 1
    deadline = ledger.rounds[(1, 1)].phase_deadline

    def opponent_commits_late() -> None:
        ledger.set_commit(1, Side.PLAYER2, b"\xee" * 32)

    # Lands right after the first (failed) claim.
    ledger.schedule(deadline + TIMING.grace + 2, opponent_commits_late)

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK) == "ok"
    assert len(ledger.write_calls("claim_timeout")) == 1
    assert ledger.matches[1].wins_p1 == 1


def test_match_ended_while_waiting() -> None:
    clock, ledger, _, advancer = setup(Opponent(commits=False))
    ledger.schedule(clock.now() + 10, lambda: ledger.cancel_match(1))

    assert advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK) == "match_ended"
    assert ledger.write_calls("claim_timeout") == []


def test_wait_budget_exhaustion_raises() -> None:
    clock, ledger, _, advancer = setup(Opponent(commits=False))
    ledger.rounds[(1, 1)] = empty_round(deadline=0)
    start = clock.now()

    with pytest.raises(WaitTimeoutError):
        advancer.advance(1, 1, Side.PLAYER1, Choice.ROCK)

    assert clock.now() - start >= TIMING.phase_timeout
    assert ledger.write_calls("claim_timeout") == []


def test_player2_side() -> None:
    _, ledger, _, advancer = setup(Opponent(choice=Choice.PAPER), side=Side.PLAYER2)

    assert advancer.advance(1, 1, Side.PLAYER2, Choice.SCISSORS) == "ok"
    assert ledger.matches[1].wins_p2 == 1
    assert ledger.rounds[(1, 1)].choice_p2 is Choice.SCISSORS
