import os
import sys
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from fastapi.testclient import TestClient
from web3 import Web3
from web3.exceptions import ContractLogicError

# allow "election_gateway" imports without installing
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..")))

from election_gateway.chain import GatewayContext, load_abi, ZERO_ADDRESS
from election_gateway.config import Settings

ADMIN_KEY = "0x" + "1" * 64
SIGNER = Account.from_key(ADMIN_KEY).address
OTHER_ADMIN = Web3.to_checksum_address("0x" + "b" * 40)
FACTORY = Web3.to_checksum_address("0x" + "f" * 40)
TX_HASH = b"\xcc" * 32
ETH = 10**18
GAS_REFUND = 10**15  # what the fake election pays out per vote


def revert(reason: str) -> ContractLogicError:
    return ContractLogicError(f"execution reverted: {reason}")


class FakeFunction:
    """Stands in for a bound web3 ContractFunction."""

    def __init__(self, address, read=None, write=None):
        self.address = address
        self._read = read
        self._write = write

    def call(self):
        return self._read()

    def build_transaction(self, params):
        self._write(params)
        return {
            "to": self.address,
            "value": params.get("value", 0),
            "gas": 200_000,
            "gasPrice": 10**9,
            "nonce": params["nonce"],
            "chainId": 31337,
            "data": "0x",
        }


class FakeFilter:
    def __init__(self, from_block=None):
        self.from_block = from_block
        self.pending = []

    def get_new_entries(self):
        entries, self.pending = self.pending, []
        return entries


class FakeElection:
    def __init__(self, address, admin, name, candidates, voters, balance):
        self.address = address
        self.admin = admin
        self.name = name
        self.candidate_names = list(candidates)
        self.registered = set(voters)
        self.voted = set()
        self.tally = {c: 0 for c in candidates}
        self.balance = balance
        self.filters = []
        self.functions = _ElectionFunctions(self)
        self.events = MagicMock()
        self.events.VoteCasted.create_filter.side_effect = self._new_filter

    def _new_filter(self, from_block=None):
        f = FakeFilter(from_block)
        self.filters.append(f)
        return f

    def _vote(self, voter, candidate):
        if voter not in self.registered:
            raise revert("Not a registered voter")
        if voter in self.voted:
            raise revert("Voter has already voted")
        if candidate not in self.tally:
            raise revert("Invalid candidate")
        before = self.balance
        self.voted.add(voter)
        self.tally[candidate] += 1
        self.balance -= GAS_REFUND
        for f in self.filters:
            f.pending.append({
                "event": "VoteCasted",
                "address": self.address,
                "args": {
                    "voter": voter,
                    "candidate": candidate,
                    "beforeBalance": before,
                    "afterBalance": self.balance,
                },
            })

    def _withdraw(self, params):
        if params["from"] != self.admin:
            raise revert("Only admin can withdraw")
        self.balance = 0


class _ElectionFunctions:
    def __init__(self, election: FakeElection):
        self.e = election

    def candidates(self, index):
        def read():
            if index >= len(self.e.candidate_names):
                raise ContractLogicError("execution reverted")
            return self.e.candidate_names[index]
        return FakeFunction(self.e.address, read=read)

    def getCandidateCount(self):
        return FakeFunction(self.e.address, read=lambda: len(self.e.candidate_names))

    def getAllVotes(self):
        return FakeFunction(
            self.e.address, read=lambda: [self.e.tally[c] for c in self.e.candidate_names]
        )

    def admin(self):
        return FakeFunction(self.e.address, read=lambda: self.e.admin)

    def vote(self, voter, candidate):
        return FakeFunction(self.e.address, write=lambda p: self.e._vote(voter, candidate))

    def withdrawAllFunds(self):
        return FakeFunction(self.e.address, write=self.e._withdraw)

    def depositFunds(self):
        def write(params):
            self.e.balance += params["value"]
        return FakeFunction(self.e.address, write=write)


class FakeFactory:
    def __init__(self):
        self.address = FACTORY
        self.by_admin = {}
        self.by_address = {}
        self.lookups = 0
        self.fail_enumeration = False
        self.functions = _FactoryFunctions(self)

    def deploy(self, admin, name, candidates, voters, balance):
        address = Web3.to_checksum_address(f"0x{len(self.by_address) + 1:040x}")
        election = FakeElection(address, admin, name, candidates, voters, balance)
        self.by_admin[admin] = election
        self.by_address[address] = election
        return election


class _FactoryFunctions:
    def __init__(self, factory: FakeFactory):
        self.f = factory

    def createElection(self, name, candidates, voters):
        def write(params):
            admin = params["from"]
            if admin in self.f.by_admin:
                raise revert("Admin already has an election")
            if params["value"] < len(voters) * 10**16:
                raise revert("Not enough ETH to cover gas fees")
            self.f.deploy(admin, name, candidates, voters, params["value"])
        return FakeFunction(self.f.address, write=write)

    def getElectionByAdmin(self, admin):
        def read():
            self.f.lookups += 1
            election = self.f.by_admin.get(admin)
            return election.address if election else ZERO_ADDRESS
        return FakeFunction(self.f.address, read=read)

    def getDeployedElections(self):
        def read():
            if self.f.fail_enumeration:
                raise ConnectionError("node unreachable")
            return list(self.f.by_address)
        return FakeFunction(self.f.address, read=read)


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def mock_web3(factory):
    w3 = MagicMock()
    w3.eth.contract.side_effect = lambda address, abi: factory.by_address[address]
    w3.eth.get_balance.side_effect = lambda address: factory.by_address[address].balance
    w3.eth.get_transaction_count.return_value = 0
    w3.eth.send_raw_transaction.return_value = TX_HASH
    receipt = MagicMock()
    receipt.status = 1
    w3.eth.wait_for_transaction_receipt.return_value = receipt
    return w3


@pytest.fixture
def settings():
    return Settings(
        rpc_url="http://localhost:8545",
        private_key=ADMIN_KEY,
        factory_address=FACTORY,
        listener_poll_interval=0.01,
    )


@pytest.fixture
def ctx(settings, mock_web3, factory):
    return GatewayContext(
        settings=settings,
        w3=mock_web3,
        account=Account.from_key(ADMIN_KEY),
        factory=factory,
        election_abi=load_abi(settings.election_abi_path),
    )


@pytest.fixture
def election(factory):
    """An election administered by the gateway's own signer."""
    return factory.deploy(SIGNER, "Blockchain Club", ["A", "B"], ["v1", "v2"], 5 * 10**16)


@pytest.fixture
def client(ctx):
    from election_gateway.main import app, get_context

    app.dependency_overrides[get_context] = lambda: ctx
    yield TestClient(app)
    app.dependency_overrides.clear()
