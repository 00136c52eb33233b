# election_core/audit/audit_logger.py

import base64
import hashlib
import json
import logging
import os
import threading
from datetime import datetime, timezone

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from flask import current_app

logger = logging.getLogger(__name__)

# Append-only activity log with hash chaining and Ed25519 signatures


def _canonical(entry):
    return json.dumps(entry, sort_keys=True, separators=(',', ':')).encode()


class AuditLogger:
    def __init__(self, log_dir='logs', signing_key_pem=None):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.previous_hash = None
        self._lock = threading.Lock()

        os.makedirs(log_dir, exist_ok=True)

        if signing_key_pem:
            if isinstance(signing_key_pem, str):
                signing_key_pem = signing_key_pem.encode()
            self.signing_key = serialization.load_pem_private_key(signing_key_pem, password=None)
        else:
            # Ephemeral key: entries verify only within this process
            self.signing_key = Ed25519PrivateKey.generate()
        self._load_previous_hash()

    def _load_previous_hash(self):
        if os.path.exists(self.log_file):
            with open(self.log_file, 'r') as f:
                lines = [line for line in f.readlines() if line.strip()]
                if lines:
                    try:
                        last_entry = json.loads(lines[-1])
                        self.previous_hash = last_entry.get('hash')
                    except ValueError:
                        logger.warning('Last audit log line is not valid JSON; starting a new chain')
                        self.previous_hash = None

    def log_activity(self, action, actor=None, details=None):
        """Append one signed entry. Never raises: a failed write is only logged."""
        try:
            with self._lock:
                entry = {
                    'timestamp': datetime.now(timezone.utc).isoformat(),
                    'action': action,
                    'actor': actor,
                    'details': details or {},
                    'previous_hash': self.previous_hash,
                }
                body = _canonical(entry)
                entry_hash = hashlib.sha256(body).hexdigest()
                entry['hash'] = entry_hash
                entry['signature'] = base64.b64encode(self.signing_key.sign(body)).decode()

                with open(self.log_file, 'a') as f:
                    f.write(json.dumps(entry) + "\n")

                self.previous_hash = entry_hash
            return entry_hash
        except Exception:
            logger.exception('Audit log write failed for action %s', action)
            return None

    def verify_log_integrity(self, public_key=None):
        public_key = public_key or self.signing_key.public_key()
        try:
            if not os.path.exists(self.log_file):
                return True
            previous_hash = None
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    entry = json.loads(line)
                    if entry.get('previous_hash') != previous_hash:
                        return False
                    signature = base64.b64decode(entry.pop('signature'))
                    recorded_hash = entry.pop('hash')
                    body = _canonical(entry)
                    if hashlib.sha256(body).hexdigest() != recorded_hash:
                        return False
                    public_key.verify(signature, body)
                    previous_hash = recorded_hash
            return True
        except (InvalidSignature, KeyError, ValueError, TypeError):
            return False


def get_audit_logger() -> AuditLogger:
    return current_app.extensions['audit_logger']
