#!/usr/bin/env python3
import os

import requests
from eth_account import Account

BASE = os.getenv("BASE_URL", "http://localhost:3000")
ADMIN = Account.from_key(os.environ["ADMIN_PRIVATE_KEY"]).address

# 1. create election
payload = {
    "electionName": "E2E",
    "candidates": ["Alice", "Bob"],
    "voters": ["Voter1", "Voter2"],
    "depositAmount": "0.03",
}
r = requests.post(f"{BASE}/create-election", json=payload)
r.raise_for_status()
print("created", r.json()["txHash"])

# 2. fresh tally
r = requests.post(f"{BASE}/results", json={"admin": ADMIN})
r.raise_for_status()
assert r.json()["result"] == {"Alice": 0, "Bob": 0}

# 3. vote, then vote again with the same voter
vote = {"admin": ADMIN, "voter": "Voter1", "candidate": "Alice"}
r = requests.post(f"{BASE}/vote", json=vote)
r.raise_for_status()
print("balance", r.json()["beforeBalance"], "->", r.json()["afterBalance"])
r = requests.post(f"{BASE}/vote", json=vote)
assert r.status_code == 409, r.text
assert r.json()["code"] == "already_voted"

r = requests.post(f"{BASE}/results", json={"admin": ADMIN})
assert r.json()["result"] == {"Alice": 1, "Bob": 0}

# 4. balance and withdrawal
r = requests.get(f"{BASE}/contract-balance/{ADMIN}")
r.raise_for_status()
print("contract balance", r.json()["balance"])
r = requests.post(f"{BASE}/withdraw", json={"admin": ADMIN})
r.raise_for_status()

print("E2E workflow succeeded")
