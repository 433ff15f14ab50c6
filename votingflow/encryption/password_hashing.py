# votingflow/encryption/password_hashing.py

import re
import logging
from argon2 import PasswordHasher
from argon2.exceptions import HashingError, InvalidHashError, VerificationError

# Account passwords are stored as Argon2id hashes only

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 12


class PasswordHashingService:
    def __init__(self):
        self.ph = PasswordHasher(
            time_cost=3,
            memory_cost=65536,
            parallelism=4,
            hash_len=32,
            salt_len=16,
        )

    def is_strong_password(self, password: str) -> bool:
        # Long enough and at least three of: upper, lower, digit, symbol
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            return False
        classes = [r'[A-Z]', r'[a-z]', r'\d', r'[^A-Za-z0-9]']
        return sum(1 for pattern in classes if re.search(pattern, password)) >= 3

    def hash_password(self, password: str) -> str:
        if not self.is_strong_password(password):
            raise ValueError("Password does not meet security requirements")
        try:
            return self.ph.hash(password)
        except HashingError as e:
            raise ValueError(f"Password hashing failed: {str(e)}")

    def verify_password(self, password: str, hash_value: str) -> bool:
        try:
            return self.ph.verify(hash_value, password)
        except (VerificationError, InvalidHashError):
            return False

    def needs_rehash(self, hash_value: str) -> bool:
        return self.ph.check_needs_rehash(hash_value)

    def verify_and_update(self, password: str, hash_value: str):
        """Return (valid, new_hash); new_hash is set when the parameters changed."""
        if not self.verify_password(password, hash_value):
            return False, None
        if self.needs_rehash(hash_value):
            logger.info("Rehashing password with current Argon2 parameters")
            return True, self.ph.hash(password)
        return True, None
