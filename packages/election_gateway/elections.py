import logging
from decimal import Decimal
from typing import NamedTuple, Optional, Sequence

from web3 import Web3
from web3.contract import Contract
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from .chain import GatewayContext, abi_has_function, is_zero_address, to_wei
from .errors import ChainError, Forbidden, Inconsistent, NotFound, ValidationError

logger = logging.getLogger(__name__)

CANDIDATE_COUNT_READS = ("getCandidateCount", "getCandidatesCount", "candidatesCount")


class VoteOutcome(NamedTuple):
    tx_hash: str
    before_balance: int
    after_balance: int


def require_address(value: str, field: str = "admin") -> str:
    if not isinstance(value, str) or not Web3.is_address(value):
        raise ValidationError(f"Invalid Ethereum address for '{field}': {value!r}")
    return Web3.to_checksum_address(value)


def resolve_election(ctx: GatewayContext, admin: str) -> Contract:
    """Look up the Election deployed for ``admin`` through the Factory."""
    admin = require_address(admin)
    address = ctx.call(ctx.factory.functions.getElectionByAdmin(admin))
    if not address or is_zero_address(address):
        raise NotFound("No election for admin")
    return ctx.election_at(address)


def deposit_for(ctx: GatewayContext, voters: Sequence[str], requested: Optional[Decimal]) -> int:
    """Wei to attach to ``createElection`` under the configured deposit policy."""
    if ctx.settings.deposit_policy == "per_voter":
        amount = (len(voters) + 1) * ctx.settings.deposit_per_voter
        if requested is not None:
            logger.info(
                "Ignoring caller deposit under per_voter policy",
                extra={"requested": str(requested), "computed": str(amount)},
            )
        return to_wei(amount, "depositAmount")
    if requested is None:
        raise ValidationError("depositAmount is required")
    return to_wei(requested, "depositAmount")


def create_election(
    ctx: GatewayContext,
    name: str,
    candidates: Sequence[str],
    voters: Sequence[str],
    deposit: Optional[Decimal] = None,
) -> str:
    if not name or not name.strip():
        raise ValidationError("electionName must not be empty")
    if not candidates:
        raise ValidationError("candidates must not be empty")
    if not voters:
        raise ValidationError("voters must not be empty")
    value = deposit_for(ctx, voters, deposit)

    logger.info(
        "Creating election",
        extra={"election": name, "candidates": len(candidates), "voters": len(voters), "value": value},
    )
    fn = ctx.factory.functions.createElection(name, list(candidates), list(voters))
    return ctx.transact(fn, value=value)


def cast_vote(ctx: GatewayContext, admin: str, voter: str, candidate: str) -> VoteOutcome:
    if not voter or not candidate:
        raise ValidationError("Missing admin, voter, or candidate")
    election = resolve_election(ctx, admin)

    before = ctx.balance_of(election.address)
    tx_hash = ctx.transact(election.functions.vote(voter, candidate), value=0)
    after = ctx.balance_of(election.address)

    logger.info(
        f"{voter} voted for {candidate}",
        extra={"admin": admin, "tx_hash": tx_hash, "before": before, "after": after},
    )
    return VoteOutcome(tx_hash, before, after)


def _candidate_count(ctx: GatewayContext, election: Contract) -> Optional[int]:
    for name in CANDIDATE_COUNT_READS:
        if abi_has_function(ctx.election_abi, name):
            return int(ctx.call(getattr(election.functions, name)()))
    return None


def list_candidates(ctx: GatewayContext, election: Contract) -> list[str]:
    """Candidate names in on-chain index order.

    Without a count read the list is read index by index; the contract's
    out-of-bounds revert ends the list.
    """
    count = _candidate_count(ctx, election)
    if count is not None:
        return [ctx.call(election.functions.candidates(i)) for i in range(count)]

    limit = ctx.settings.max_candidates
    names: list[str] = []
    for index in range(limit + 1):
        try:
            names.append(election.functions.candidates(index).call())
        except (ContractLogicError, BadFunctionCallOutput):
            return names
        except Exception as exc:
            raise ChainError(f"Could not read candidate {index}: {exc}") from exc
    raise Inconsistent(f"Candidate list exceeds the scan limit of {limit}")


def read_results(ctx: GatewayContext, admin: str) -> dict[str, int]:
    election = resolve_election(ctx, admin)
    names = list_candidates(ctx, election)
    votes = ctx.call(election.functions.getAllVotes())

    if len(names) != len(votes):
        raise Inconsistent(
            f"Election has {len(names)} candidates but {len(votes)} vote counts"
        )

    result: dict[str, int] = {}
    for name, count in zip(names, votes):
        if name in result:
            logger.warning("Duplicate candidate name", extra={"admin": admin, "candidate": name})
            continue
        result[name] = int(count)
    return result


def read_balance(ctx: GatewayContext, admin: str) -> int:
    election = resolve_election(ctx, admin)
    return ctx.balance_of(election.address)


def withdraw_funds(ctx: GatewayContext, admin: str) -> str:
    election = resolve_election(ctx, admin)
    contract_admin = ctx.call(election.functions.admin())
    if str(contract_admin).lower() != ctx.signer.lower():
        raise Forbidden("Backend wallet is not the election admin", code="not_admin")
    return ctx.transact(election.functions.withdrawAllFunds())


def deposit_funds(ctx: GatewayContext, admin: str, amount: Decimal) -> str:
    value = to_wei(amount)
    election = resolve_election(ctx, admin)
    return ctx.transact(election.functions.depositFunds(), value=value)


def list_elections(ctx: GatewayContext) -> list[str]:
    addresses = ctx.call(ctx.factory.functions.getDeployedElections())
    return [Web3.to_checksum_address(a) for a in addresses]
