from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ledger import Ledger
from outcome import RoundFragments, determine_match_winner, is_forfeit_shaped
from protocol import LedgerReadError, MatchSnapshot, MatchState, format_usdc, prize_for, same_address


@dataclass
class PlayerStats:
    address: str
    matches_played: int = 0
    matches_won: int = 0
    matches_lost: int = 0
    rounds_won: int = 0
    rounds_lost: int = 0
    total_earnings: int = 0
    total_wagered: int = 0

    @property
    def win_rate(self) -> int:
        return round(self.matches_won / self.matches_played * 100) if self.matches_played else 0

    @property
    def profit_loss(self) -> int:
        return self.total_earnings - self.total_wagered


@dataclass
class Leaderboard:
    _players: dict[str, PlayerStats] = field(default_factory=dict)
    total_matches: int = 0
    volume: int = 0

    @classmethod
    def build(cls, ledger: Ledger) -> "Leaderboard":
        counter = ledger.match_counter()
        matches = ledger.get_matches(1, counter) if counter > 0 else {}

        board = cls()
        for match_id, match in sorted(matches.items()):
            if match.state is not MatchState.COMPLETE:
                continue
            last_round: RoundFragments | None = None
            if is_forfeit_shaped(match):
                try:
                    last_round = RoundFragments.from_round(ledger.get_round(match_id, match.current_round))
                except LedgerReadError:
                    pass
            board.record(match, determine_match_winner(match, last_round))
        return board

    def _stats(self, address: str) -> PlayerStats:
        return self._players.setdefault(address.lower(), PlayerStats(address=address))

    def record(self, match: MatchSnapshot, winner: str | None) -> None:
        self.total_matches += 1
        s1 = self._stats(match.player1)
        s2 = self._stats(match.player2) if match.player2 else None

        s1.matches_played += 1
        s1.total_wagered += match.entry_fee
        s1.rounds_won += match.wins_p1
        s1.rounds_lost += match.wins_p2
        if s2 is not None:
            s2.matches_played += 1
            s2.total_wagered += match.entry_fee
            s2.rounds_won += match.wins_p2
            s2.rounds_lost += match.wins_p1
            self.volume += match.entry_fee * 2

        if winner is None:
            return
        prize = prize_for(match.entry_fee)
        if same_address(winner, match.player1):
            s1.matches_won += 1
            s1.total_earnings += prize
            if s2 is not None:
                s2.matches_lost += 1
        else:
            s1.matches_lost += 1
            if s2 is not None:
                s2.matches_won += 1
                s2.total_earnings += prize

    def get(self, address: str) -> PlayerStats:
        return self._players.get(address.lower(), PlayerStats(address=address))

    def players(self) -> list[PlayerStats]:
        ranked = [s for s in self._players.values() if s.matches_played > 0]
        # Stable sort keeps first-seen order among equal win counts.
        ranked.sort(key=lambda s: s.matches_won, reverse=True)
        return ranked

    def to_dict(self) -> dict[str, Any]:
        players = []
        for s in self.players():
            entry = asdict(s)
            entry["win_rate"] = f"{s.win_rate}%"
            entry["profit_loss"] = ("+" if s.profit_loss >= 0 else "") + format_usdc(s.profit_loss)
            players.append(entry)
        return {"players": players, "total_matches": self.total_matches, "total_volume": format_usdc(self.volume)}

    def format_table(self) -> str:
        players = self.players()
        if not players:
            return "(no completed matches yet)"

        lines: list[str] = []
        header = f"{'address':42}  {'played':>6}  {'won':>4}  {'lost':>4}  {'rate':>4}  {'p/l':>10}"
        lines.append(header)
        lines.append("-" * len(header))
        for s in players:
            pl = ("+" if s.profit_loss >= 0 else "") + format_usdc(s.profit_loss)
            lines.append(
                f"{s.address:42}  {s.matches_played:>6}  {s.matches_won:>4}  {s.matches_lost:>4}  "
                f"{str(s.win_rate) + '%':>4}  {pl:>10}"
            )
        return "\n".join(lines)
