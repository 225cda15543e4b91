from __future__ import annotations

import secrets
from typing import Final

from web3 import Web3

from protocol import Choice

SECRET_BYTES: Final[int] = 32
# Packing must match keccak256(abi.encodePacked(uint8 choice, bytes32 secret)) on the ledger.
COMMIT_TYPES: Final[list[str]] = ["uint8", "bytes32"]


def generate_secret(num_bytes: int = SECRET_BYTES) -> bytes:
    return secrets.token_bytes(num_bytes)


def commitment_hash(choice: Choice, secret: bytes) -> bytes:
    if len(secret) != SECRET_BYTES:
        raise ValueError(f"secret must be {SECRET_BYTES} bytes, got {len(secret)}")
    return bytes(Web3.solidity_keccak(COMMIT_TYPES, [int(choice), secret]))


def verify_commitment(*, expected_commitment: bytes, choice: Choice, secret: bytes) -> bool:
    computed = commitment_hash(choice, secret)
    return secrets.compare_digest(expected_commitment, computed)


def secret_to_hex(secret: bytes) -> str:
    return "0x" + secret.hex()


def secret_from_hex(value: str) -> bytes:
    raw = value[2:] if value.startswith("0x") else value
    return bytes.fromhex(raw)
