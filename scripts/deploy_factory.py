#!/usr/bin/env python3
# scripts/deploy_factory.py
import json
import os
import sys

from eth_account import Account
from web3 import Web3

EVM_RPC = os.getenv("EVM_RPC", "http://127.0.0.1:8545")
PRIVATE_KEY = os.environ["ADMIN_PRIVATE_KEY"]
ARTIFACT = os.getenv(
    "FACTORY_ARTIFACT", "artifacts/contracts/ElectionFactory.sol/ElectionFactory.json"
)

if not os.path.exists(ARTIFACT):
    sys.exit(f"Factory artifact not found at {ARTIFACT}. Compile the contracts first.")

with open(ARTIFACT) as f:
    artifact = json.load(f)

w3 = Web3(Web3.HTTPProvider(EVM_RPC))
acct = Account.from_key(PRIVATE_KEY)
Factory = w3.eth.contract(abi=artifact["abi"], bytecode=artifact["bytecode"])

tx = Factory.constructor().build_transaction({
    "from": acct.address,
    "nonce": w3.eth.get_transaction_count(acct.address),
})
signed = acct.sign_transaction(tx)
txh = w3.eth.send_raw_transaction(signed.raw_transaction)
rcpt = w3.eth.wait_for_transaction_receipt(txh)
if rcpt.status != 1:
    sys.exit(f"Factory deployment reverted: {txh.hex()}")

print(f"Factory contract deployed at: {rcpt.contractAddress}")
print(f"FACTORY_CONTRACT={rcpt.contractAddress}")
