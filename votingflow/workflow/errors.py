# votingflow/workflow/errors.py

# Rejections raised by the voting session. Every one of them leaves the
# session untouched; the HTTP layer maps them to status codes.


class VotingError(Exception):
    """Base class for a rejected voting session call."""

    kind = "voting_error"
    status_code = 400
    default_message = "Voting operation rejected"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"error": self.kind, "message": self.message}


class NotAuthorizedError(VotingError):
    kind = "not_authorized"
    status_code = 403
    default_message = "Caller lacks the required role"


class AlreadyRegisteredError(VotingError):
    kind = "already_registered"
    status_code = 409
    default_message = "Voter is already registered"


class NotRegisteredError(VotingError):
    kind = "not_registered"
    status_code = 404
    default_message = "Voter is not registered"


class WrongPhaseError(VotingError):
    kind = "wrong_phase"
    status_code = 409
    default_message = "Operation not allowed in the current phase"

    def __init__(self, current, required, message=None):
        self.current = current
        self.required = required
        super().__init__(
            message
            or f"Operation requires phase {required.name}, session is in {current.name}"
        )

    def to_dict(self):
        data = super().to_dict()
        data["current_status"] = self.current.name
        data["required_status"] = self.required.name
        return data


class AlreadyVotedError(VotingError):
    kind = "already_voted"
    status_code = 409
    default_message = "Voter has already voted"


class InvalidProposalError(VotingError):
    kind = "invalid_proposal"
    status_code = 400
    default_message = "Proposal does not exist"


class ProposalNotFoundError(VotingError):
    kind = "not_found"
    status_code = 404
    default_message = "No proposal matches that description"


class InvalidOperationError(VotingError):
    kind = "invalid_operation"
    status_code = 409
    default_message = "Operation cannot be performed on the current session"
