"""
In-process development network.

Two LocalChains (Horizen testnet and Base Sepolia ids) with one bridge
each, a source token on the first and a destination token on the second,
funded accounts for a user and a solver, and a relayer authorized on both
bridges. Used by `xip relayer start`, `xip demo` and the integration tests.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from xip.chain.client import LocalLedgerClient
from xip.core.config import BASE_SEPOLIA_CHAIN_ID, HORIZEN_TESTNET_CHAIN_ID, ONE_TOKEN, NetworkConfig
from xip.core.state.chain import LocalChain
from xip.crypto import KeyPair, generate_keypair, random_address
from xip.utils.logger import get_logger

logger = get_logger("devnet")


@dataclass
class DevNetwork:
    """Everything a local bridge run needs, already wired together."""

    origin: LocalChain
    destination: LocalChain
    source_token: str
    destination_token: str
    owner: KeyPair
    user: KeyPair
    solver: KeyPair
    relayer: KeyPair
    networks: Dict[int, NetworkConfig] = field(default_factory=dict)

    @property
    def chains(self) -> Dict[int, LocalChain]:
        return {self.origin.chain_id: self.origin, self.destination.chain_id: self.destination}

    def clients_for(self, keypair: KeyPair, receipt_poll_interval: float = 0.05) -> Dict[int, LocalLedgerClient]:
        """One ledger client per chain, all signing as `keypair`."""
        return {
            chain_id: LocalLedgerClient(chain, keypair, receipt_poll_interval)
            for chain_id, chain in self.chains.items()
        }


def create_devnet(
    clock: Callable[[], float] = time.time,
    user_funds: int = 1_000 * ONE_TOKEN,
    solver_funds: int = 1_000 * ONE_TOKEN,
    cancel_grace_period: int = 3600,
    deposit_grace_period: int = 3600,
    relayer: Optional[KeyPair] = None,
) -> DevNetwork:
    """
    Build a funded two-chain network.

    Args:
        clock: Timestamp source for both chains
        user_funds: Source tokens minted to the user on the origin chain
        solver_funds: Minted to the solver on both chains (bid deposits on
            the origin, deliveries on the destination)
        relayer: Relayer identity, generated when omitted

    Returns:
        DevNetwork with the relayer authorized on both bridges
    """
    owner = generate_keypair()
    user = generate_keypair()
    solver = generate_keypair()
    relayer = relayer or generate_keypair()

    origin = LocalChain(
        HORIZEN_TESTNET_CHAIN_ID,
        owner=owner.address,
        clock=clock,
        cancel_grace_period=cancel_grace_period,
        deposit_grace_period=deposit_grace_period,
    )
    destination = LocalChain(
        BASE_SEPOLIA_CHAIN_ID,
        owner=owner.address,
        clock=clock,
        cancel_grace_period=cancel_grace_period,
        deposit_grace_period=deposit_grace_period,
    )

    source_token = random_address()
    destination_token = random_address()

    origin.mint(source_token, user.address, user_funds)
    origin.mint(source_token, solver.address, solver_funds)
    destination.mint(destination_token, solver.address, solver_funds)

    for chain in (origin, destination):
        chain.add_relayer(relayer.address)

    networks = {
        origin.chain_id: NetworkConfig(
            key="horizen", name="Horizen Testnet (local)", chain_id=origin.chain_id,
            bridge_address=origin.bridge_address,
        ),
        destination.chain_id: NetworkConfig(
            key="base", name="Base Sepolia (local)", chain_id=destination.chain_id,
            bridge_address=destination.bridge_address,
        ),
    }

    logger.info(
        f"Devnet ready: origin {origin.chain_id} bridge {origin.bridge_address}, "
        f"destination {destination.chain_id} bridge {destination.bridge_address}"
    )
    return DevNetwork(
        origin=origin,
        destination=destination,
        source_token=source_token,
        destination_token=destination_token,
        owner=owner,
        user=user,
        solver=solver,
        relayer=relayer,
        networks=networks,
    )
