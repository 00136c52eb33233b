# election_core/errors.py
"""Typed error kinds surfaced by the election core.

Every expected, caller-recoverable condition is an ``ElectionCoreError``
subclass carrying a stable ``error_code`` and the HTTP status the API layer
answers with. Anything else is treated as a server fault.

Exception hierarchy:
- ElectionCoreError
  - ElectionNotActiveError: voting attempted outside the active phase
  - ElectionConfigError: the election window cannot be resolved
    - InvalidElectionWindowError: a submitted window was rejected
  - ElectionNotFoundError: no such election
  - VoterNotFoundError: unknown voter identifier
  - AlreadyVotedError: voter already voted, carries proof of the prior vote
  - VoterLockedError: voter record can no longer be removed
  - InvalidSelectionError: malformed position/candidate reference
  - PositionNotFoundError: results requested for an unknown position
  - PermissionDeniedError: role may not perform the action
  - StorageConflictError: lost the compare-and-set race on the voter flag
"""

from datetime import datetime
from typing import Any, Dict, Optional


class ElectionCoreError(Exception):
    error_code = 'ERROR'
    http_status = 400
    default_message = 'Request could not be completed'

    def __init__(self, message: Optional[str] = None, **payload):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.payload = payload

    def to_dict(self) -> Dict[str, Any]:
        body = {'success': False, 'errorCode': self.error_code, 'message': self.message}
        body.update(self.payload)
        return body


class ElectionNotActiveError(ElectionCoreError):
    error_code = 'ELECTION_NOT_ACTIVE'
    http_status = 403
    default_message = 'Voting is not currently open'


class ElectionConfigError(ElectionCoreError):
    error_code = 'CONFIG_ERROR'
    http_status = 503
    default_message = 'Election window is not configured correctly'


class InvalidElectionWindowError(ElectionConfigError):
    # Same checks as ElectionConfigError, but the window came from the caller
    error_code = 'INVALID_WINDOW'
    http_status = 400
    default_message = 'Election window is invalid'


class ElectionNotFoundError(ElectionCoreError):
    error_code = 'ELECTION_NOT_FOUND'
    http_status = 404
    default_message = 'Election not found'


class VoterNotFoundError(ElectionCoreError):
    error_code = 'NOT_FOUND'
    http_status = 404
    default_message = 'Voter not found'


class AlreadyVotedError(ElectionCoreError):
    error_code = 'ALREADY_VOTED'
    http_status = 409
    default_message = 'Voter has already cast a vote'

    def __init__(self, voter_id: str, name: str, voted_at: Optional[datetime]):
        super().__init__(
            voter={
                'voterId': voter_id,
                'name': name,
                'votedAt': voted_at.isoformat() if voted_at else None,
            }
        )
        self.voter_id = voter_id
        self.name = name
        self.voted_at = voted_at


class VoterLockedError(ElectionCoreError):
    error_code = 'VOTER_LOCKED'
    http_status = 409
    default_message = 'Voter has already voted and cannot be removed'


class InvalidSelectionError(ElectionCoreError):
    error_code = 'INVALID_SELECTION'
    http_status = 400
    default_message = 'Invalid ballot selection'


class PositionNotFoundError(ElectionCoreError):
    error_code = 'POSITION_NOT_FOUND'
    http_status = 404
    default_message = 'Position not found'


class PermissionDeniedError(ElectionCoreError):
    error_code = 'PERMISSION_DENIED'
    http_status = 403
    default_message = 'Access denied'


class StorageConflictError(ElectionCoreError):
    error_code = 'STORAGE_CONFLICT'
    http_status = 409
    default_message = 'Another submission for this voter is in progress'
