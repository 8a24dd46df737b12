"""Static transaction history and explorer link helpers.

The records are sample callbacks from the Reactive Network scheduler to the
Sepolia vault. Nothing here queries a chain.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Literal

from .constants import (
    REACTIVE_SCAN_BASE_URL,
    RVM_ADDRESS,
    SEPOLIA_ETHERSCAN_BASE_URL,
)


@dataclass(frozen=True)
class TransactionRecord:
    id: str
    tx_number: int
    reactive_hash: str
    sepolia_hash: str
    timestamp: str
    status: Literal["success", "failed"]
    destination_chain: str
    block_number: int


SAMPLE_TRANSACTIONS: tuple[TransactionRecord, ...] = (
    TransactionRecord(
        id="1",
        tx_number=49,
        reactive_hash="0xfe5e48caca2a179ae807a73492fea41cca20ac0248acb9e8fdb0679a888026e6",
        sepolia_hash="0x717b361935c68b1a4f2d0c51f2d3547e26788656234122024ecf250dc75999f3",
        timestamp="2025-12-26 12:09:12",
        status="success",
        destination_chain="Sepolia",
        block_number=9918025,
    ),
    TransactionRecord(
        id="2",
        tx_number=48,
        reactive_hash="0xb7d2de7797aefde21d3f1bf945f0baf577d37f1444ac5745fec784feaae475e0",
        sepolia_hash="0xe45e3694cfc420ec047100cf03ee5ae37e04dff9591ed44bada12e71fbe9bbab",
        timestamp="2025-12-26 11:57:12",
        status="success",
        destination_chain="Sepolia",
        block_number=9917972,
    ),
    TransactionRecord(
        id="3",
        tx_number=47,
        reactive_hash="0xdc0879e6f3d37e15e45b020119b6da757595bc0c0accf57013707b80b6267f83",
        sepolia_hash="0x57ea838365d7b004d8d2951f79911ef1d864b874a2b7ed59ec7c2ee843f15d7e",
        timestamp="2025-12-24 22:25:24",
        status="success",
        destination_chain="Sepolia",
        block_number=9908016,
    ),
    TransactionRecord(
        id="4",
        tx_number=46,
        reactive_hash="0x0f59cf08514fae9db605a4a937251f5bd3f6adf7e1fd1c1357a438d46640b1b7",
        sepolia_hash="0xc193f06e9fcfe66bbc1a89d8fa4de5ffded09832318380c6580b37a7fc485aa4",
        timestamp="2025-12-24 22:13:36",
        status="success",
        destination_chain="Sepolia",
        block_number=9907964,
    ),
    TransactionRecord(
        id="5",
        tx_number=45,
        reactive_hash="0xbe3ceeb84df5479631a7deba5b5337d4892b41d01ed787060c89efb45ed5b596",
        sepolia_hash="0xfe94034ca0a85ecfabfccffe4bce8125d168ed36c64531590054e3bb9ef3c04c",
        timestamp="2025-12-24 22:02:00",
        status="success",
        destination_chain="Sepolia",
        block_number=9907909,
    ),
    TransactionRecord(
        id="6",
        tx_number=44,
        reactive_hash="0x059314ef0567523f825f9a652e305ea4284f4ba1973e95bced2f8c09d22618ac",
        sepolia_hash="0x70d771c6219d76c7a5328a0abd214bf9e5bfb2188f82211a65dd32d613a713fe",
        timestamp="2025-12-24 21:50:24",
        status="success",
        destination_chain="Sepolia",
        block_number=9907854,
    ),
)


def load_transaction_history() -> list[TransactionRecord]:
    """Return the sample records, newest first."""
    return sorted(SAMPLE_TRANSACTIONS, key=lambda tx: tx.tx_number, reverse=True)


def format_unix_time(unix_time: int) -> str:
    """Format a Unix timestamp (seconds) as ``HH:MM:SS`` in UTC."""
    return datetime.fromtimestamp(unix_time, tz=timezone.utc).strftime("%H:%M:%S")


def reactive_scan_url(tx_number: int, rvm_address: str = RVM_ADDRESS) -> str:
    return f"{REACTIVE_SCAN_BASE_URL}/address/{rvm_address}/{tx_number}"


def sepolia_address_url(contract_address: str) -> str:
    return f"{SEPOLIA_ETHERSCAN_BASE_URL}/address/{contract_address}"


def truncate_hash(tx_hash: str) -> str:
    """Shorten a hash to ``0xabcdef...123456``; short values pass through."""
    if not tx_hash or len(tx_hash) < 14:
        return tx_hash
    return f"{tx_hash[:8]}...{tx_hash[-6:]}"
