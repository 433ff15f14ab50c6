# votingflow/workflow/phases.py

from enum import Enum

# Workflow phases of a voting session, in their only legal forward order


class WorkflowStatus(Enum):
    REGISTERING_VOTERS = 0
    PROPOSALS_REGISTRATION_STARTED = 1
    PROPOSALS_REGISTRATION_ENDED = 2
    VOTING_SESSION_STARTED = 3
    VOTING_SESSION_ENDED = 4
    VOTES_TALLIED = 5

    @property
    def label(self):
        return STATUS_LABELS.get(self, UNKNOWN_STATUS_LABEL)


STATUS_LABELS = {
    WorkflowStatus.REGISTERING_VOTERS: "Registering voters",
    WorkflowStatus.PROPOSALS_REGISTRATION_STARTED: "Proposals registration started",
    WorkflowStatus.PROPOSALS_REGISTRATION_ENDED: "Proposals registration ended",
    WorkflowStatus.VOTING_SESSION_STARTED: "Voting session started",
    WorkflowStatus.VOTING_SESSION_ENDED: "Voting session ended",
    WorkflowStatus.VOTES_TALLIED: "Votes tallied",
}

UNKNOWN_STATUS_LABEL = "Unknown status"

# Administrative transition name -> (required source phase, target phase)
TRANSITIONS = {
    "start_proposals_registration": (
        WorkflowStatus.REGISTERING_VOTERS,
        WorkflowStatus.PROPOSALS_REGISTRATION_STARTED,
    ),
    "end_proposals_registration": (
        WorkflowStatus.PROPOSALS_REGISTRATION_STARTED,
        WorkflowStatus.PROPOSALS_REGISTRATION_ENDED,
    ),
    "start_voting_session": (
        WorkflowStatus.PROPOSALS_REGISTRATION_ENDED,
        WorkflowStatus.VOTING_SESSION_STARTED,
    ),
    "end_voting_session": (
        WorkflowStatus.VOTING_SESSION_STARTED,
        WorkflowStatus.VOTING_SESSION_ENDED,
    ),
    "tally_votes": (
        WorkflowStatus.VOTING_SESSION_ENDED,
        WorkflowStatus.VOTES_TALLIED,
    ),
}


def describe_status(status) -> str:
    if isinstance(status, WorkflowStatus):
        return status.label
    return UNKNOWN_STATUS_LABEL
