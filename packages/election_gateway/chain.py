import json
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError
from web3.middleware import ExtraDataToPOAMiddleware

from .config import Settings
from .errors import ChainError, ValidationError, classify_revert

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


def load_abi(path: str) -> list:
    """Load an ABI from a Hardhat/Foundry artifact or a bare ABI list."""
    if not os.path.exists(path):
        raise RuntimeError(f"Could not load contract ABI from {path}")
    with open(path) as f:
        artifact = json.load(f)
    if isinstance(artifact, dict):
        artifact = artifact.get("abi")
    if not isinstance(artifact, list):
        raise RuntimeError(f"No ABI found in {path}")
    return artifact


def abi_has_function(abi: list, name: str) -> bool:
    return any(item.get("type") == "function" and item.get("name") == name for item in abi)


def format_ether(wei: int) -> str:
    """Render wei as a decimal ether string, always with a fractional part."""
    text = format(Decimal(Web3.from_wei(int(wei), "ether")), "f")
    return text if "." in text else f"{text}.0"


def _fraction_digits(amount: Decimal) -> int:
    _, digits, exponent = amount.as_tuple()
    trailing = len(digits) - len("".join(map(str, digits)).rstrip("0"))
    return max(0, -(exponent + trailing))


def to_wei(amount: Decimal, field: str = "amount") -> int:
    amount = Decimal(amount)
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field} must be a positive ETH amount")
    if _fraction_digits(amount) > 18:
        raise ValidationError(f"{field} has more than 18 decimal places")
    try:
        return Web3.to_wei(amount, "ether")
    except ValueError as exc:
        raise ValidationError(f"{field} is out of range: {exc}") from exc


def is_zero_address(address: str) -> bool:
    return int(address, 16) == 0


def connect_w3(rpc_url: str) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    # PoA testnets put extra bytes in the block header.
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    return w3


@dataclass
class GatewayContext:
    """Chain connection, signing identity and contract proxies for one process."""

    settings: Settings
    w3: Web3
    account: LocalAccount
    factory: Contract
    election_abi: list

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayContext":
        w3 = connect_w3(settings.rpc_url)
        try:
            account = Account.from_key(settings.private_key)
        except Exception as exc:
            raise RuntimeError(f"ADMIN_PRIVATE_KEY is not a valid private key: {exc}") from exc
        factory = w3.eth.contract(
            address=settings.factory_address,
            abi=load_abi(settings.factory_abi_path),
        )
        logger.info(
            "Gateway context ready",
            extra={"signer": account.address, "factory": settings.factory_address},
        )
        return cls(
            settings=settings,
            w3=w3,
            account=account,
            factory=factory,
            election_abi=load_abi(settings.election_abi_path),
        )

    @property
    def signer(self) -> str:
        return self.account.address

    def election_at(self, address: str) -> Contract:
        return self.w3.eth.contract(
            address=Web3.to_checksum_address(address), abi=self.election_abi
        )

    def call(self, fn) -> Any:
        """Run a read-only contract call, translating node failures."""
        try:
            return fn.call()
        except ContractLogicError as exc:
            raise classify_revert(getattr(exc, "message", None) or str(exc)) from exc
        except Exception as exc:
            raise ChainError(f"Contract call failed: {exc}") from exc

    def balance_of(self, address: str) -> int:
        try:
            return self.w3.eth.get_balance(Web3.to_checksum_address(address))
        except Exception as exc:
            raise ChainError(f"Could not read balance: {exc}") from exc

    def transact(self, fn, value: int = 0) -> str:
        """Build, sign and send a state-changing call, then wait for it to be mined.

        Gas is estimated by the node while building, so most reverts surface
        here with their reason string before anything is broadcast.
        """
        try:
            params = {
                "from": self.account.address,
                "value": value,
                "nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
            }
            if self.settings.chain_id is not None:
                params["chainId"] = self.settings.chain_id
            tx = fn.build_transaction(params)
            signed = self.account.sign_transaction(tx)
            tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.tx_timeout
            )
        except ContractLogicError as exc:
            raise classify_revert(getattr(exc, "message", None) or str(exc)) from exc
        except Exception as exc:
            raise ChainError(f"On-chain transaction failed: {exc}") from exc

        tx_hex = Web3.to_hex(tx_hash)
        if receipt.status != 1:
            raise ChainError(f"On-chain transaction reverted. Tx hash: {tx_hex}")
        return tx_hex
