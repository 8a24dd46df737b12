from __future__ import annotations

from eth_typing import URI
from web3 import AsyncWeb3
from web3.contract import AsyncContract

# AutoYieldVault view functions read by the monitor
VAULT_ABI: list[dict] = [
    {
        "inputs": [],
        "name": "getBestPool",
        "outputs": [
            {"internalType": "address", "name": "bestPool", "type": "address"},
            {"internalType": "uint256", "name": "bestRate", "type": "uint256"},
            {"internalType": "uint256", "name": "currentRate", "type": "uint256"},
            {"internalType": "bool", "name": "shouldRebalance", "type": "bool"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getAllPoolRates",
        "outputs": [
            {"internalType": "address[]", "name": "pools", "type": "address[]"},
            {"internalType": "uint256[]", "name": "rates", "type": "uint256[]"},
            {"internalType": "bool[]", "name": "successes", "type": "bool[]"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "activePool",
        "outputs": [{"internalType": "address", "name": "", "type": "address"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "rebalanceThresholdRay",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]


def build_vault_contract(w3: AsyncWeb3, vault_address: str) -> AsyncContract:
    """Bind the vault ABI to ``vault_address`` on the given provider."""
    checksum_vault = w3.to_checksum_address(vault_address)
    return w3.eth.contract(address=checksum_vault, abi=VAULT_ABI)


def build_async_web3(rpc_url: str) -> AsyncWeb3:
    """Create an AsyncWeb3 client with web3's own request retries disabled.

    Endpoint failover is handled by the rate source, so a failing endpoint
    must surface its error right away.
    """
    return AsyncWeb3(
        AsyncWeb3.AsyncHTTPProvider(URI(rpc_url), exception_retry_configuration=None)
    )
