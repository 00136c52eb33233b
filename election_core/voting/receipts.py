# election_core/voting/receipts.py
"""Voter-facing receipt tokens.

A token is random and says nothing about who voted or how. Only its SHA-256
digest and the election id are stored, so a receipt proves that *some* ballot
was accepted without linking back to a voter or their choices.
"""

import hashlib
import secrets

from election_core.database.models import VoteReceipt
from election_core.election.snapshot import current_election_snapshot

TOKEN_BYTES = 24


def new_receipt_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def receipt_digest(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def verify_receipt(token) -> bool:
    if not isinstance(token, str) or not token.strip():
        return False
    snapshot = current_election_snapshot()
    if snapshot is None:
        return False
    found = VoteReceipt.query.filter_by(
        token_hash=receipt_digest(token.strip()), election_id=snapshot.election_id
    ).first()
    return found is not None
