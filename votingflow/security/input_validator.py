# votingflow/security/input_validator.py

import re
import bleach

# Request payload validation; anything that reaches the voting session has
# passed through here.

MAX_DESCRIPTION_LENGTH = 500


class InputValidator:
    def __init__(self):
        self.patterns = {
            'identity': re.compile(r'^0x[0-9a-fA-F]{40}$'),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
        }

    def validate_identity(self, identity):
        return isinstance(identity, str) and bool(self.patterns['identity'].match(identity))

    def normalize_identity(self, identity):
        if not self.validate_identity(identity):
            raise ValueError("Identity must be a 0x-prefixed 40 digit hex address")
        return identity.lower()

    def sanitize_description(self, description, max_length=MAX_DESCRIPTION_LENGTH):
        if not isinstance(description, str):
            raise ValueError("Description must be a string")
        if len(description) > max_length:
            raise ValueError(f"Description longer than {max_length} characters")

        sanitized = re.sub(self.patterns['xss_script'], '', description)
        sanitized = bleach.clean(sanitized, tags=[], attributes={}, strip=True)
        sanitized = sanitized.strip()
        if not sanitized:
            raise ValueError("Description must not be empty")
        return sanitized

    def validate_proposal_id(self, proposal_id):
        # Range is checked by the session against the live proposal list.
        if isinstance(proposal_id, bool) or not isinstance(proposal_id, int):
            raise ValueError("proposal_id must be an integer")
        return proposal_id

    def validate_value(self, value):
        if value is None:
            return 0
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError("value must be a non-negative integer")
        return value
