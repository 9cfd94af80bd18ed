"""
Configuration parameters for XIP.

Defines the bridged networks, the solver's bidding economics, and the
relayer's settlement policy. Every value can be overridden from the
environment (optionally through a .env file).
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Set

from dotenv import load_dotenv

from xip.core.errors import InvalidParameters


# Chain ids of the two testnets the bridge was first deployed between
HORIZEN_TESTNET_CHAIN_ID = 845320009
BASE_SEPOLIA_CHAIN_ID = 84532

# Token amounts are in 18-decimal base units
ONE_TOKEN = 10**18

# Recipient store and other local state
DEFAULT_DATA_DIR = Path("~/.xip")


@dataclass
class NetworkConfig:
    """One bridged chain."""
    key: str                        # short name used in logs and URLs
    name: str
    chain_id: int
    rpc_url: str = ""
    bridge_address: str = ""
    explorer: str = ""

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "chainId": self.chain_id,
            "bridgeAddress": self.bridge_address,
            "explorer": self.explorer,
        }


def default_networks() -> List[NetworkConfig]:
    """Networks as configured through the per-chain env variables."""
    return [
        NetworkConfig(
            key="horizen",
            name="Horizen Testnet",
            chain_id=HORIZEN_TESTNET_CHAIN_ID,
            rpc_url=os.getenv("HORIZEN_TESTNET_RPC_URL", ""),
            bridge_address=os.getenv("BRIDGE_CONTRACT_HORIZEN_LATEST", ""),
            explorer="https://horizen-explorer-testnet.appchain.base.org",
        ),
        NetworkConfig(
            key="base",
            name="Base Sepolia",
            chain_id=BASE_SEPOLIA_CHAIN_ID,
            rpc_url=os.getenv("BASE_SEPOLIA_RPC_URL", ""),
            bridge_address=os.getenv("BRIDGE_CONTRACT_BASE_LATEST", ""),
            explorer="https://sepolia-explorer.base.org",
        ),
    ]


def load_networks() -> List[NetworkConfig]:
    """
    Load bridged networks.

    XIP_NETWORKS may hold a JSON list of objects with the NetworkConfig
    fields (camelCase chainId/bridgeAddress/rpcUrl accepted); otherwise the
    two default testnets are used.
    """
    raw = os.getenv("XIP_NETWORKS")
    if not raw:
        return default_networks()

    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidParameters(f"XIP_NETWORKS is not valid JSON: {e}")

    networks = []
    for entry in entries:
        networks.append(NetworkConfig(
            key=entry["key"],
            name=entry.get("name", entry["key"]),
            chain_id=int(entry.get("chain_id", entry.get("chainId"))),
            rpc_url=entry.get("rpc_url", entry.get("rpcUrl", "")),
            bridge_address=entry.get("bridge_address", entry.get("bridgeAddress", "")),
            explorer=entry.get("explorer", ""),
        ))
    return networks


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def data_dir_from_env(env_file: Optional[str] = None) -> Path:
    """XIP_DATA_DIR, else ~/.xip."""
    load_dotenv(env_file)
    return Path(os.getenv("XIP_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()


def _env_tokens(name: str, default: int) -> int:
    """Read a whole-token amount (e.g. MAX_BID_AMOUNT=1000) as base units."""
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return int(float(value) * ONE_TOKEN)


# =============================================================================
# Solver
# =============================================================================


@dataclass
class SolverConfig:
    """Bidding economics and timing of the solver engine."""

    # Economics
    min_profit_margin: float = 0.02             # Fraction shaved off source+reward
    max_bid_amount: int = 1000 * ONE_TOKEN      # Hard cap on any single bid
    bid_increment: int = ONE_TOKEN              # Step over the current highest bid
    balance_buffer: float = 0.1                 # Fraction of balance never committed

    # Timing (seconds)
    poll_interval: float = 5.0                  # Discovery tick
    block_range: int = 100                      # Max blocks per log query
    bid_interval: float = 10.0                  # Bidding tick
    settle_delay: float = 10.0                  # Wait after solve before /settle
    completion_poll_interval: float = 2.0
    completion_timeout: float = 60.0
    tx_timeout: float = 60.0                    # wait_for_receipt timeout

    # Relayer
    relayer_url: str = "http://localhost:3000"
    relayer_timeout: float = 30.0

    # origin chain id -> destination chain id; unset means "the other chain"
    routes: Dict[int, int] = field(default_factory=dict)

    # Start discovery here instead of at the head block
    start_block: Optional[int] = None

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "SolverConfig":
        load_dotenv(env_file)
        defaults = cls()
        routes = {}
        if os.getenv("SOLVER_ROUTES"):
            routes = {int(k): int(v) for k, v in json.loads(os.environ["SOLVER_ROUTES"]).items()}
        start_block = os.getenv("SOLVER_START_BLOCK")
        return cls(
            min_profit_margin=_env_float("MIN_PROFIT_MARGIN", defaults.min_profit_margin),
            max_bid_amount=_env_tokens("MAX_BID_AMOUNT", defaults.max_bid_amount),
            bid_increment=_env_tokens("BID_INCREMENT", defaults.bid_increment),
            balance_buffer=_env_float("BALANCE_BUFFER", defaults.balance_buffer),
            poll_interval=_env_float("SOLVER_POLL_INTERVAL", defaults.poll_interval),
            block_range=_env_int("SOLVER_BLOCK_RANGE", defaults.block_range),
            bid_interval=_env_float("SOLVER_BID_INTERVAL", defaults.bid_interval),
            settle_delay=_env_float("SOLVER_SETTLE_DELAY", defaults.settle_delay),
            completion_timeout=_env_float("SOLVER_COMPLETION_TIMEOUT", defaults.completion_timeout),
            relayer_url=os.getenv("RELAYER_URL", defaults.relayer_url),
            routes=routes,
            start_block=int(start_block) if start_block else None,
        )


# =============================================================================
# Relayer
# =============================================================================


@dataclass
class RelayerConfig:
    """Settlement policy and HTTP settings of the relayer service."""

    host: str = "0.0.0.0"
    port: int = 3000

    # Destinations whose deliveries must also pass proof finalization
    proof_required_chains: Set[int] = field(default_factory=lambda: {BASE_SEPOLIA_CHAIN_ID})
    # Apply the proof policy on /settle too, not only on /settle-with-proof
    strict_proof: bool = False

    # Proof verification service
    proof_api_url: str = "https://relayer-api.horizenlabs.io/api/v1"
    proof_api_key: str = ""
    proof_type: str = "sp1"
    proof_poll_interval: float = 5.0
    proof_max_attempts: int = 60
    proof_timeout: float = 30.0             # per HTTP request

    tx_timeout: float = 120.0               # wait_for_receipt timeout

    # Recipient privacy store
    data_dir: Path = DEFAULT_DATA_DIR.expanduser()
    store_db_name: str = "recipients.db"

    def requires_proof(self, destination_chain_id: int) -> bool:
        return destination_chain_id in self.proof_required_chains

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "RelayerConfig":
        load_dotenv(env_file)
        defaults = cls()
        proof_chains = defaults.proof_required_chains
        if os.getenv("PROOF_REQUIRED_CHAINS") is not None:
            proof_chains = {
                int(c) for c in os.environ["PROOF_REQUIRED_CHAINS"].split(",") if c.strip()
            }
        return cls(
            host=os.getenv("RELAYER_HOST", defaults.host),
            port=_env_int("PORT", defaults.port),
            proof_required_chains=proof_chains,
            strict_proof=os.getenv("STRICT_PROOF", "").lower() in ("1", "true", "yes"),
            proof_api_url=os.getenv("PROOF_API_URL", defaults.proof_api_url),
            proof_api_key=os.getenv("PROOF_API_KEY", defaults.proof_api_key),
            proof_type=os.getenv("PROOF_TYPE", defaults.proof_type),
            proof_poll_interval=_env_float("PROOF_POLL_INTERVAL", defaults.proof_poll_interval),
            proof_max_attempts=_env_int("PROOF_MAX_ATTEMPTS", defaults.proof_max_attempts),
            data_dir=data_dir_from_env(env_file),
        )


def load_private_key(env_file: Optional[str] = None, required: bool = True) -> Optional[str]:
    """
    Signing key shared by the solver and relayer processes.

    Raises:
        InvalidParameters: PRIVATE_KEY is unset while required, or is not
            32 hex-encoded bytes
    """
    load_dotenv(env_file)
    private_key = os.getenv("PRIVATE_KEY", "").strip()
    if not private_key:
        if required:
            raise InvalidParameters("PRIVATE_KEY environment variable is required")
        return None
    body = private_key[2:] if private_key.startswith(("0x", "0X")) else private_key
    if len(body) != 64:
        raise InvalidParameters("PRIVATE_KEY must be 32 hex-encoded bytes")
    try:
        bytes.fromhex(body)
    except ValueError:
        raise InvalidParameters("PRIVATE_KEY must be 32 hex-encoded bytes")
    return private_key
