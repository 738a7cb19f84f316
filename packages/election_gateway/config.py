import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel
from web3 import Web3

ABI_DIR = Path(__file__).parent / "abi"
INFURA_URL = "https://sepolia.infura.io/v3/{key}"


class Settings(BaseModel):
    rpc_url: str
    private_key: str
    factory_address: str
    chain_id: Optional[int] = None
    factory_abi_path: str = str(ABI_DIR / "ElectionFactory.json")
    election_abi_path: str = str(ABI_DIR / "Election.json")
    deposit_policy: Literal["caller", "per_voter"] = "caller"
    deposit_per_voter: Decimal = Decimal("0.01")
    max_candidates: int = 256
    tx_timeout: int = 120
    listener_enabled: bool = True
    listener_poll_interval: float = 2.0


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from the environment, failing fast on missing values."""
    env = os.environ if env is None else env

    rpc_url = env.get("EVM_RPC")
    if not rpc_url and env.get("INFURA_API_KEY"):
        rpc_url = INFURA_URL.format(key=env["INFURA_API_KEY"])
    private_key = env.get("ADMIN_PRIVATE_KEY")
    factory = env.get("FACTORY_CONTRACT")

    missing = [
        name
        for name, value in (
            ("EVM_RPC", rpc_url),
            ("ADMIN_PRIVATE_KEY", private_key),
            ("FACTORY_CONTRACT", factory),
        )
        if not value
    ]
    if missing:
        raise RuntimeError(f"Missing required configuration: {', '.join(missing)}")

    if not Web3.is_address(factory):
        raise RuntimeError(f"FACTORY_CONTRACT is not a valid address: {factory}")

    policy = env.get("DEPOSIT_POLICY", "caller")
    if policy not in ("caller", "per_voter"):
        raise RuntimeError("DEPOSIT_POLICY must be 'caller' or 'per_voter'")

    try:
        per_voter = Decimal(env.get("DEPOSIT_PER_VOTER", "0.01"))
        chain_id = int(env["CHAIN_ID"]) if env.get("CHAIN_ID") else None
        max_candidates = int(env.get("MAX_CANDIDATES", "256"))
        tx_timeout = int(env.get("TX_TIMEOUT", "120"))
        poll_interval = float(env.get("LISTENER_POLL_INTERVAL", "2"))
    except (InvalidOperation, ValueError) as exc:
        raise RuntimeError(f"Invalid numeric configuration: {exc}") from exc

    settings = Settings(
        rpc_url=rpc_url,
        private_key=private_key,
        factory_address=Web3.to_checksum_address(factory),
        chain_id=chain_id,
        deposit_policy=policy,
        deposit_per_voter=per_voter,
        max_candidates=max_candidates,
        tx_timeout=tx_timeout,
        listener_enabled=_flag(env.get("LISTENER_ENABLED", "true")),
        listener_poll_interval=poll_interval,
    )
    if env.get("FACTORY_ABI_PATH"):
        settings.factory_abi_path = env["FACTORY_ABI_PATH"]
    if env.get("ELECTION_ABI_PATH"):
        settings.election_abi_path = env["ELECTION_ABI_PATH"]
    return settings
