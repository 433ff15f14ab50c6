# votingflow/workflow/events.py

from dataclasses import dataclass, asdict
from typing import Any, Dict

from votingflow.workflow.phases import WorkflowStatus

# Notifications emitted by the voting session after each committed change.


@dataclass(frozen=True)
class SessionEvent:
    event_type = "session_event"

    def as_dict(self) -> Dict[str, Any]:
        data = {}
        for key, value in asdict(self).items():
            data[key] = value.name if isinstance(value, WorkflowStatus) else value
        return data


@dataclass(frozen=True)
class VoterRegistered(SessionEvent):
    voter: str
    event_type = "voter_registered"


@dataclass(frozen=True)
class VoterRevoked(SessionEvent):
    voter: str
    event_type = "voter_revoked"


@dataclass(frozen=True)
class WorkflowStatusChange(SessionEvent):
    previous_status: WorkflowStatus
    new_status: WorkflowStatus
    event_type = "workflow_status_change"


@dataclass(frozen=True)
class ProposalRegistered(SessionEvent):
    proposal_id: int
    event_type = "proposal_registered"


@dataclass(frozen=True)
class Voted(SessionEvent):
    voter: str
    proposal_id: int
    event_type = "voted"


@dataclass(frozen=True)
class WinnerRecomputed(SessionEvent):
    previous_winner: int
    winning_proposal_id: int
    event_type = "winner_recomputed"


@dataclass(frozen=True)
class SessionReset(SessionEvent):
    cleared_proposals: int
    cleared_votes: int
    event_type = "session_reset"
