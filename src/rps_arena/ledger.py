from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from eth_abi.exceptions import DecodingError
from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.logs import DISCARD

from clock import Clock, SystemClock
from protocol import (
    ZERO_ADDRESS,
    Choice,
    LedgerReadError,
    MatchSnapshot,
    MatchState,
    RoundPhase,
    RoundSnapshot,
    TransactionFailed,
)

logger = logging.getLogger(__name__)

ZERO_BYTES32 = b"\x00" * 32
RECEIPT_TIMEOUT = 120

# Gas limits for calls whose estimate is unreliable while the opponent may act in the same block.
COMMIT_GAS = 150_000
REVEAL_GAS = 500_000
CLAIM_GAS = 500_000
CANCEL_GAS = 150_000

# Canonical Multicall3 deployment, same address on Base and Base Sepolia.
MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"
MULTICALL_BATCH = 500

FEE_READ_ATTEMPTS = 5
FEE_READ_DELAY = 1.0

# Errors raised by web3 calls and the HTTP transport underneath it.
RPC_ERRORS = (Web3Exception, ValueError, OSError)


def _fn(name: str, inputs: Sequence[tuple[str, str]], outputs: Sequence[tuple[str, str]] = (), view: bool = False) -> dict[str, Any]:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view" if view else "nonpayable",
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": [{"name": n, "type": t} for n, t in outputs],
    }


ARENA_ABI: list[dict[str, Any]] = [
    {
        "type": "event",
        "name": "MatchCreated",
        "anonymous": False,
        "inputs": [
            {"name": "matchId", "type": "uint256", "indexed": True},
            {"name": "player1", "type": "address", "indexed": True},
            {"name": "entryFee", "type": "uint256", "indexed": False},
        ],
    },
    _fn(
        "getMatch",
        [("_matchId", "uint256")],
        [
            ("player1", "address"),
            ("player2", "address"),
            ("entryFee", "uint256"),
            ("pot", "uint256"),
            ("state", "uint8"),
            ("winsP1", "uint8"),
            ("winsP2", "uint8"),
            ("currentRound", "uint8"),
            ("createdAt", "uint256"),
            ("startedAt", "uint256"),
        ],
        view=True,
    ),
    _fn(
        "getRound",
        [("_matchId", "uint256"), ("_round", "uint8")],
        [
            ("commitP1", "bytes32"),
            ("commitP2", "bytes32"),
            ("choiceP1", "uint8"),
            ("choiceP2", "uint8"),
            ("phase", "uint8"),
            ("phaseDeadline", "uint256"),
            ("winner", "address"),
        ],
        view=True,
    ),
    _fn("matchCounter", [], [("", "uint256")], view=True),
    _fn("getPlayerMatches", [("_player", "address")], [("", "uint256[]")], view=True),
    _fn("createMatch", [("_entryFee", "uint256")], [("", "uint256")]),
    _fn("joinMatch", [("_matchId", "uint256")]),
    _fn("commit", [("_matchId", "uint256"), ("_commitment", "bytes32")]),
    _fn("reveal", [("_matchId", "uint256"), ("_choice", "uint8"), ("_secret", "bytes32")]),
    _fn("claimTimeout", [("_matchId", "uint256")]),
    _fn("cancelMatch", [("_matchId", "uint256")]),
    _fn("claimMatchExpiry", [("_matchId", "uint256")]),
]

GET_MATCH_TYPES = [o["type"] for o in ARENA_ABI[1]["outputs"]]

MULTICALL3_ABI: list[dict[str, Any]] = [
    {
        "type": "function",
        "name": "aggregate3",
        "stateMutability": "payable",
        "inputs": [
            {
                "name": "calls",
                "type": "tuple[]",
                "components": [
                    {"name": "target", "type": "address"},
                    {"name": "allowFailure", "type": "bool"},
                    {"name": "callData", "type": "bytes"},
                ],
            }
        ],
        "outputs": [
            {
                "name": "returnData",
                "type": "tuple[]",
                "components": [
                    {"name": "success", "type": "bool"},
                    {"name": "returnData", "type": "bytes"},
                ],
            }
        ],
    }
]

ERC20_ABI: list[dict[str, Any]] = [
    _fn("approve", [("spender", "address"), ("amount", "uint256")], [("", "bool")]),
    _fn("balanceOf", [("account", "address")], [("", "uint256")], view=True),
]


class Ledger(Protocol):
    """Query and submit surface of the arena ledger."""

    address: str
    network: int

    def get_match(self, match_id: int) -> MatchSnapshot: ...

    def get_round(self, match_id: int, round_no: int) -> RoundSnapshot: ...

    def match_counter(self) -> int: ...

    def get_matches(self, start_id: int, end_id: int) -> dict[int, MatchSnapshot]: ...

    def player_matches(self) -> list[int]: ...

    def create_match(self, entry_fee: int) -> int: ...

    def join_match(self, match_id: int, entry_fee: int | None = None) -> str: ...

    def commit(self, match_id: int, commitment: bytes) -> str: ...

    def reveal(self, match_id: int, choice: Choice, secret: bytes) -> str: ...

    def claim_timeout(self, match_id: int) -> str: ...

    def cancel_match(self, match_id: int) -> str: ...

    def claim_match_expiry(self, match_id: int) -> str: ...

    def token_balance(self) -> int: ...

    def native_balance(self) -> int: ...


def _address_or_none(value: str) -> str | None:
    return None if value.lower() == ZERO_ADDRESS else value


def _commit_or_none(value: bytes) -> bytes | None:
    raw = bytes(value)
    return None if raw == ZERO_BYTES32 else raw


def _choice_or_none(value: int) -> Choice | None:
    return Choice(value) if value else None


def match_from_tuple(raw: Sequence[Any]) -> MatchSnapshot:
    return MatchSnapshot(
        player1=raw[0],
        player2=_address_or_none(raw[1]),
        entry_fee=int(raw[2]),
        pot=int(raw[3]),
        state=MatchState(raw[4]),
        wins_p1=int(raw[5]),
        wins_p2=int(raw[6]),
        current_round=int(raw[7]),
        created_at=int(raw[8]),
        started_at=int(raw[9]),
    )


def round_from_tuple(raw: Sequence[Any]) -> RoundSnapshot:
    return RoundSnapshot(
        commit_p1=_commit_or_none(raw[0]),
        commit_p2=_commit_or_none(raw[1]),
        choice_p1=_choice_or_none(raw[2]),
        choice_p2=_choice_or_none(raw[3]),
        phase=RoundPhase(raw[4]),
        phase_deadline=int(raw[5]),
        winner=_address_or_none(raw[6]),
    )


class ArenaLedger:
    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: str,
        arena_address: str,
        usdc_address: str,
        chain_id: int,
        w3: Web3 | None = None,
        clock: Clock | None = None,
        multicall_address: str = MULTICALL3_ADDRESS,
    ) -> None:
        self._w3 = w3 or Web3(Web3.HTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self._clock = clock or SystemClock()
        self.address: str = self._account.address
        self.network = chain_id
        self._arena = self._w3.eth.contract(address=Web3.to_checksum_address(arena_address), abi=ARENA_ABI)
        self._usdc = self._w3.eth.contract(address=Web3.to_checksum_address(usdc_address), abi=ERC20_ABI)
        self._multicall = self._w3.eth.contract(
            address=Web3.to_checksum_address(multicall_address), abi=MULTICALL3_ABI
        )

    # --- Reads ---

    def _call(self, func: Any, what: str) -> Any:
        try:
            return func.call()
        except RPC_ERRORS as exc:
            raise LedgerReadError(f"{what} failed: {type(exc).__name__}: {exc}") from exc

    def get_match(self, match_id: int) -> MatchSnapshot:
        raw = self._call(self._arena.functions.getMatch(match_id), f"getMatch({match_id})")
        return match_from_tuple(raw)

    def get_round(self, match_id: int, round_no: int) -> RoundSnapshot:
        raw = self._call(self._arena.functions.getRound(match_id, round_no), f"getRound({match_id}, {round_no})")
        return round_from_tuple(raw)

    def match_counter(self) -> int:
        return int(self._call(self._arena.functions.matchCounter(), "matchCounter()"))

    def get_matches(self, start_id: int, end_id: int) -> dict[int, MatchSnapshot]:
        """Read matches ``start_id..end_id`` through Multicall3; ids that fail are left out."""
        matches: dict[int, MatchSnapshot] = {}
        for batch_start in range(start_id, end_id + 1, MULTICALL_BATCH):
            ids = list(range(batch_start, min(batch_start + MULTICALL_BATCH - 1, end_id) + 1))
            try:
                matches.update(self._get_match_batch(ids))
            except LedgerReadError as exc:
                logger.debug("Multicall for matches %d..%d failed (%s); reading one by one", ids[0], ids[-1], exc)
                matches.update(self._get_match_each(ids))
        return matches

    def _get_match_batch(self, ids: list[int]) -> dict[int, MatchSnapshot]:
        calls = [
            (self._arena.address, True, Web3.to_bytes(hexstr=self._arena.encode_abi("getMatch", args=[i])))
            for i in ids
        ]
        results = self._call(self._multicall.functions.aggregate3(calls), f"aggregate3(getMatch {ids[0]}..{ids[-1]})")

        matches: dict[int, MatchSnapshot] = {}
        for match_id, (success, data) in zip(ids, results):
            if not success:
                logger.debug("Skipping match %d: call reverted", match_id)
                continue
            try:
                raw = list(self._w3.codec.decode(GET_MATCH_TYPES, bytes(data)))
            except DecodingError as exc:
                logger.debug("Skipping match %d: %s", match_id, exc)
                continue
            raw[0] = Web3.to_checksum_address(raw[0])
            raw[1] = Web3.to_checksum_address(raw[1])
            matches[match_id] = match_from_tuple(raw)
        return matches

    def _get_match_each(self, ids: list[int]) -> dict[int, MatchSnapshot]:
        matches: dict[int, MatchSnapshot] = {}
        for match_id in ids:
            try:
                matches[match_id] = self.get_match(match_id)
            except LedgerReadError as exc:
                logger.debug("Skipping match %d: %s", match_id, exc)
        return matches

    def player_matches(self) -> list[int]:
        raw = self._call(self._arena.functions.getPlayerMatches(self.address), "getPlayerMatches()")
        return [int(x) for x in raw]

    def token_balance(self) -> int:
        return int(self._call(self._usdc.functions.balanceOf(self.address), "balanceOf()"))

    def native_balance(self) -> int:
        try:
            return int(self._w3.eth.get_balance(self.address))
        except RPC_ERRORS as exc:
            raise LedgerReadError(f"get_balance failed: {exc}") from exc

    # --- Writes ---

    def _transact(self, action: str, func: Any, gas: int | None = None) -> tuple[str, Any]:
        try:
            params: dict[str, Any] = {
                "from": self.address,
                "nonce": self._w3.eth.get_transaction_count(self.address, "pending"),
            }
            if gas is not None:
                params["gas"] = gas
            tx = func.build_transaction(params)
            signed = self._account.sign_transaction(tx)
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT)
        except RPC_ERRORS as exc:
            raise TransactionFailed(action) from exc

        tx_hex = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise TransactionFailed(action, tx_hex)
        logger.debug("%s confirmed in %s", action, tx_hex)
        return tx_hex, receipt

    def approve(self, amount: int) -> str:
        logger.info("Approving %d token units for arena...", amount)
        tx_hex, _ = self._transact("approve", self._usdc.functions.approve(self._arena.address, amount))
        return tx_hex

    def create_match(self, entry_fee: int) -> int:
        self.approve(entry_fee)
        logger.info("Creating match on-chain...")
        _, receipt = self._transact("createMatch", self._arena.functions.createMatch(entry_fee))

        events = self._arena.events.MatchCreated().process_receipt(receipt, errors=DISCARD)
        if events:
            return int(events[0]["args"]["matchId"])
        return self.match_counter()

    def join_match(self, match_id: int, entry_fee: int | None = None) -> str:
        fee = entry_fee
        if not fee:
            fee = self._read_entry_fee(match_id)
        if not fee:
            raise LedgerReadError(f"Could not get entry fee for match {match_id}")

        self.approve(fee)
        logger.info("Joining match #%d...", match_id)
        tx_hex, _ = self._transact("joinMatch", self._arena.functions.joinMatch(match_id))
        return tx_hex

    def _read_entry_fee(self, match_id: int) -> int:
        # A freshly created match may not be visible on every RPC node yet.
        for attempt in range(1, FEE_READ_ATTEMPTS + 1):
            try:
                fee = self.get_match(match_id).entry_fee
            except LedgerReadError as exc:
                logger.debug("Entry fee read %d for match %d failed: %s", attempt, match_id, exc)
                fee = 0
            if fee > 0:
                return fee
            if attempt < FEE_READ_ATTEMPTS:
                logger.info("Waiting for RPC to sync match data...")
                self._clock.sleep(FEE_READ_DELAY)
        return 0

    def commit(self, match_id: int, commitment: bytes) -> str:
        tx_hex, _ = self._transact("commit", self._arena.functions.commit(match_id, commitment), gas=COMMIT_GAS)
        return tx_hex

    def reveal(self, match_id: int, choice: Choice, secret: bytes) -> str:
        tx_hex, _ = self._transact(
            "reveal", self._arena.functions.reveal(match_id, int(choice), secret), gas=REVEAL_GAS
        )
        return tx_hex

    def claim_timeout(self, match_id: int) -> str:
        tx_hex, _ = self._transact("claimTimeout", self._arena.functions.claimTimeout(match_id), gas=CLAIM_GAS)
        return tx_hex

    def cancel_match(self, match_id: int) -> str:
        tx_hex, _ = self._transact("cancelMatch", self._arena.functions.cancelMatch(match_id), gas=CANCEL_GAS)
        return tx_hex

    def claim_match_expiry(self, match_id: int) -> str:
        tx_hex, _ = self._transact(
            "claimMatchExpiry", self._arena.functions.claimMatchExpiry(match_id), gas=CLAIM_GAS
        )
        return tx_hex
