# votingflow/audit/audit_logger.py

import os
import json
import hashlib
import base64
import logging
import threading
from datetime import datetime, timezone
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives import serialization

# Append-only journal of voting session events and rejected requests,
# hash chained and signed with Ed25519

logger = logging.getLogger(__name__)

KEY_FILE_NAME = 'audit_signing_key.pem'


class AuditLogger:
    def __init__(self, log_dir='logs', signing_key=None):
        self.log_dir = log_dir
        self.log_file = os.path.join(log_dir, 'audit.log')
        self.key_file = os.path.join(log_dir, KEY_FILE_NAME)
        self.previous_hash = None
        self._lock = threading.Lock()

        os.makedirs(log_dir, exist_ok=True)

        self.signing_key = signing_key or self._load_or_create_key()
        self._load_previous_hash()

    def __call__(self, event):
        """Session listener entry point."""
        self.record_event(event)

    def _load_or_create_key(self):
        if os.path.exists(self.key_file):
            with open(self.key_file, 'rb') as f:
                return serialization.load_pem_private_key(f.read(), password=None)
        key = Ed25519PrivateKey.generate()
        pem = key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        with open(self.key_file, 'wb') as f:
            f.write(pem)
        return key

    def _load_previous_hash(self):
        if os.path.exists(self.log_file):
            with open(self.log_file, 'r') as f:
                lines = [line for line in f.readlines() if line.strip()]
                if lines:
                    try:
                        last_entry = json.loads(lines[-1])
                        self.previous_hash = last_entry.get('hash')
                    except ValueError:
                        self.previous_hash = None

    def public_key_pem(self) -> str:
        return self.signing_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode()

    def record_event(self, event):
        self._append(event.event_type, event.as_dict(), category='session')

    def log_security_event(self, event_type, data, user_id=None):
        self._append(event_type, data, category='security', user_id=user_id)

    def _append(self, event_type, data, category, user_id=None):
        # Reading previous_hash and appending must not interleave between threads
        with self._lock:
            try:
                log_entry = {
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                    "category": category,
                    "event_type": event_type,
                    "data": data,
                    "user_id": user_id,
                    "previous_hash": self.previous_hash,
                }
                entry_json = json.dumps(log_entry, sort_keys=True)
                entry_hash = hashlib.sha256(entry_json.encode()).hexdigest()
                signature = self.signing_key.sign(entry_json.encode())
                log_entry['hash'] = entry_hash
                log_entry['signature'] = base64.b64encode(signature).decode()

                with open(self.log_file, 'a') as f:
                    f.write(json.dumps(log_entry) + "\n")

                self.previous_hash = entry_hash
            except (OSError, TypeError, ValueError) as e:
                logger.error("Audit log write failed for %s: %s", event_type, e)

    def read_entries(self):
        if not os.path.exists(self.log_file):
            return []
        entries = []
        with open(self.log_file, 'r') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except ValueError:
                    entries.append({'raw': line})
        return entries

    def verify_log_integrity(self):
        if not os.path.exists(self.log_file):
            return True
        public_key = self.signing_key.public_key()
        previous_hash = None
        try:
            with open(self.log_file, 'r') as f:
                for line in f:
                    if not line.strip():
                        continue
                    entry = json.loads(line)
                    if entry.get('previous_hash') != previous_hash:
                        return False
                    signature = base64.b64decode(entry.pop('signature'))
                    entry_hash = entry.pop('hash')
                    entry_json = json.dumps(entry, sort_keys=True).encode()
                    if hashlib.sha256(entry_json).hexdigest() != entry_hash:
                        return False
                    public_key.verify(signature, entry_json)
                    previous_hash = entry_hash
        except (KeyError, ValueError, InvalidSignature) as e:
            logger.warning("Audit log verification failed: %s", e)
            return False
        return True
