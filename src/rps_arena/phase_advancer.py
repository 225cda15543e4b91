from __future__ import annotations

import logging
from typing import Callable

from clock import Clock
from commit_reveal import commitment_hash, generate_secret
from ledger import Ledger
from protocol import (
    AdvanceResult,
    ArenaError,
    Choice,
    MissingSecretError,
    RoundPhase,
    RoundSnapshot,
    Side,
    WaitTimeoutError,
)
from secret_store import CommitKey, SecretStore, StoredSecret
from settings import Timing

logger = logging.getLogger(__name__)


class PhaseAdvancer:
    """Drives a single round through commit and reveal, claiming lapsed opponent deadlines."""

    def __init__(self, ledger: Ledger, store: SecretStore, clock: Clock, timing: Timing | None = None) -> None:
        self.ledger = ledger
        self.store = store
        self.clock = clock
        self.timing = timing or Timing()

    def key(self, match_id: int, round_no: int) -> CommitKey:
        return CommitKey(network=self.ledger.network, match_id=match_id, round=round_no)

    def commit(self, match_id: int, round_no: int, choice: Choice) -> str:
        key = self.key(match_id, round_no)
        # Persisted before the call goes out; a retry must reuse what was stored.
        stored = self.store.put(key, StoredSecret(choice=choice, secret=generate_secret()))
        if stored.choice != choice:
            logger.info("Round %d: reusing stored %s from an earlier commit attempt", round_no, stored.choice.label)
        return self.ledger.commit(match_id, commitment_hash(stored.choice, stored.secret))

    def reveal(self, match_id: int, round_no: int) -> str:
        key = self.key(match_id, round_no)
        stored = self.store.get(key)
        if stored is None:
            raise MissingSecretError(key)
        tx_hash = self.ledger.reveal(match_id, stored.choice, stored.secret)
        self.store.delete(key)
        return tx_hash

    def advance(self, match_id: int, round_no: int, side: Side, choice: Choice | None = None) -> AdvanceResult:
        """Block until ``round_no`` is COMPLETE, the match ends, or a timeout win is claimed.

        ``choice`` is only needed when this side has not committed yet.
        """
        opponent = side.opponent
        rnd = self.ledger.get_round(match_id, round_no)

        if rnd.phase is RoundPhase.COMMIT:
            if rnd.commitment(side) is None:
                if choice is None:
                    stored = self.store.get(self.key(match_id, round_no))
                    if stored is None:
                        raise ValueError(f"a choice is required to commit round {round_no}")
                    choice = stored.choice
                logger.info("Round %d: committing %s...", round_no, choice.label)
                self.commit(match_id, round_no, choice)
            else:
                logger.info("Round %d: already committed, waiting for opponent...", round_no)
            result = self._wait(
                match_id,
                round_no,
                stage="commit",
                done=lambda r: r.phase is not RoundPhase.COMMIT,
                opponent_missing=lambda r: r.commitment(opponent) is None,
            )
            if result != "ok":
                return result
            rnd = self.ledger.get_round(match_id, round_no)

        if rnd.phase is RoundPhase.REVEAL:
            if rnd.choice(side) is None:
                logger.info("Round %d: revealing choice...", round_no)
                self.reveal(match_id, round_no)
            else:
                logger.info("Round %d: already revealed, waiting for opponent...", round_no)
            return self._wait(
                match_id,
                round_no,
                stage="reveal",
                done=lambda r: r.phase is RoundPhase.COMPLETE,
                opponent_missing=lambda r: r.choice(opponent) is None,
            )

        return "ok"

    def deadline_passed(self, rnd: RoundSnapshot) -> bool:
        return rnd.has_deadline and self.clock.now() > rnd.phase_deadline + self.timing.grace

    def _wait(
        self,
        match_id: int,
        round_no: int,
        *,
        stage: str,
        done: Callable[[RoundSnapshot], bool],
        opponent_missing: Callable[[RoundSnapshot], bool],
    ) -> AdvanceResult:
        start = self.clock.now()
        while self.clock.now() - start < self.timing.phase_timeout:
            match = self.ledger.get_match(match_id)
            if match.state.is_terminal:
                return "match_ended"

            rnd = self.ledger.get_round(match_id, round_no)
            if done(rnd):
                return "ok"

            if self.deadline_passed(rnd) and opponent_missing(rnd):
                logger.info("Opponent missed the %s deadline! Claiming timeout...", stage)
                try:
                    self.ledger.claim_timeout(match_id)
                except ArenaError as exc:
                    # Usually the opponent acted first; the next snapshot will show it.
                    logger.warning("Timeout claim failed: %s", exc)
                else:
                    logger.info("Timeout claimed successfully!")
                    return "timeout_claimed"

            self.clock.sleep(self.timing.poll_interval)

        raise WaitTimeoutError(f"Timed out waiting for round {round_no} of match {match_id} to finish its {stage} phase")
