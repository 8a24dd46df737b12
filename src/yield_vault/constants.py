"""Deployment addresses, endpoints and fixed-point constants."""

# Ray (1e27) -> percentage divisor
RAY_PERCENT_DIVISOR = 10**25
UINT256_MAX = 2**256 - 1

# Deployed contracts (Sepolia)
AUTO_YIELD_VAULT = "0xc8F25cf0aB99e77D8671301c2f19B03554F80B5b"
AAVE_POOL = "0x1DbaE63b3a7dd56438eCd25c1816d53E519b6720"
SPARK_POOL = "0x548a8308464bDF1F96409ef684537137bcd0C7E2"
COMPOUND_COMET = "0x985d3d497f39C7359DC535205b3b1c7e49063A5B"

POOL_LABELS: dict[str, str] = {
    AAVE_POOL.lower(): "Aave V3",
    SPARK_POOL.lower(): "SparkLend",
    COMPOUND_COMET.lower(): "Compound",
}

UNKNOWN_POOL_LABEL = "Unknown Pool"

# Public Sepolia RPC endpoints, tried in rotation
DEFAULT_SEPOLIA_RPC_URLS = [
    "https://rpc.sepolia.org",
    "https://ethereum-sepolia-rpc.publicnode.com",
    "https://sepolia.gateway.tenderly.co",
    "https://rpc2.sepolia.org",
]

# Reactive Network side of the automation
RVM_ADDRESS = "0x75b3aee6908d0447dd598bf183bdc955ae280ca1"
REACTIVE_SCAN_BASE_URL = "https://lasna.reactscan.net"
SEPOLIA_ETHERSCAN_BASE_URL = "https://sepolia.etherscan.io"

# Cron countdown shown next to the vault (blocks until the next Reactive cron)
BLOCKS_PER_CYCLE = 50
INITIAL_BLOCKS_UNTIL_CRON = 45
CRON_BLOCK_BASE = 49_200


def pool_label(pool_id: str) -> str:
    """Human-readable name for a pool id, used in activity text."""
    return POOL_LABELS.get(pool_id.lower(), UNKNOWN_POOL_LABEL)
