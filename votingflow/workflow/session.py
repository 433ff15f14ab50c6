# votingflow/workflow/session.py

import logging
import threading
from collections import deque
from dataclasses import dataclass, asdict, replace
from functools import wraps
from typing import Callable, Dict, List, Optional

from votingflow.workflow.errors import (
    AlreadyRegisteredError,
    AlreadyVotedError,
    InvalidOperationError,
    InvalidProposalError,
    NotAuthorizedError,
    NotRegisteredError,
    ProposalNotFoundError,
    WrongPhaseError,
)
from votingflow.workflow.events import (
    ProposalRegistered,
    SessionReset,
    Voted,
    VoterRegistered,
    VoterRevoked,
    WinnerRecomputed,
    WorkflowStatusChange,
)
from votingflow.workflow.phases import TRANSITIONS, WorkflowStatus, describe_status

logger = logging.getLogger(__name__)


@dataclass
class Voter:
    is_registered: bool = False
    has_voted: bool = False
    voted_proposal_id: Optional[int] = None

    def as_dict(self):
        return asdict(self)


@dataclass
class Proposal:
    description: str
    vote_count: int = 0

    def as_dict(self):
        return asdict(self)


def synchronized(method):
    """
    Run a session method as one critical section over the whole session state.

    Events queued by the method are delivered once the lock is released.
    """
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            with self._lock:
                return method(self, *args, **kwargs)
        finally:
            self._dispatch()
    return wrapper


class VotingSession:
    """
    Permissioned voting workflow run by a single administrator.

    The administrator registers voters and walks the session through its
    phases; registered voters submit proposals and cast one vote each. Every
    public operation validates all of its preconditions before touching state,
    so a rejected call has no effect. Listeners receive one event per
    committed change, in commit order, outside the session lock.
    """

    def __init__(self, administrator: str, listeners: Optional[List[Callable]] = None):
        if not administrator:
            raise ValueError("A voting session needs an administrator identity")
        self._administrator = administrator
        self._voters: Dict[str, Voter] = {}
        self._proposals: List[Proposal] = []
        self._status = WorkflowStatus.REGISTERING_VOTERS
        self._winning_proposal_id: Optional[int] = None
        self._listeners: List[Callable] = list(listeners or [])
        self._lock = threading.RLock()
        self._pending = deque()
        self._dispatch_lock = threading.RLock()
        self._delivering = False

    # ------------------------------ state ---------------------------------- #

    @property
    def administrator(self) -> str:
        return self._administrator

    @property
    def status(self) -> WorkflowStatus:
        return self._status

    @property
    def winning_proposal_id(self) -> Optional[int]:
        return self._winning_proposal_id

    @property
    def proposal_count(self) -> int:
        return len(self._proposals)

    @property
    def voter_count(self) -> int:
        with self._lock:
            return sum(1 for voter in self._voters.values() if voter.is_registered)

    def is_administrator(self, identity) -> bool:
        return identity == self._administrator

    def is_registered(self, identity) -> bool:
        with self._lock:
            return self._lookup_voter(identity) is not None

    def subscribe(self, listener: Callable):
        with self._lock:
            self._listeners.append(listener)

    @synchronized
    def snapshot(self) -> Dict:
        return {
            "status": self._status.name,
            "description": describe_status(self._status),
            "proposal_count": len(self._proposals),
            "voter_count": self.voter_count,
            "winning_proposal_id": self._winning_proposal_id,
        }

    # ------------------------------ guards --------------------------------- #

    def _only_administrator(self, caller):
        if not self.is_administrator(caller):
            raise NotAuthorizedError("Only the administrator may perform this operation")

    def _lookup_voter(self, identity) -> Optional[Voter]:
        # Absent and unregistered records are treated the same way.
        voter = self._voters.get(identity)
        if voter is not None and voter.is_registered:
            return voter
        return None

    def _only_voters(self, caller) -> Voter:
        voter = self._lookup_voter(caller)
        if voter is None:
            raise NotAuthorizedError("Only registered voters may perform this operation")
        return voter

    def _require_status(self, required: WorkflowStatus):
        if self._status is not required:
            raise WrongPhaseError(self._status, required)

    def _emit(self, event):
        # Queued under the session lock, so queue order is commit order.
        self._pending.append(event)

    def _dispatch(self):
        with self._dispatch_lock:
            # A listener calling back into the session leaves the queue to the outer loop.
            if self._delivering:
                return
            self._delivering = True
            try:
                while self._pending:
                    event = self._pending.popleft()
                    for listener in list(self._listeners):
                        try:
                            listener(event)
                        except Exception:
                            logger.exception("Listener %r failed to handle %s", listener, event.event_type)
            finally:
                self._delivering = False

    # ------------------------- voter registry ------------------------------ #

    @synchronized
    def register_voter(self, caller, identity) -> Voter:
        self._only_administrator(caller)
        if not identity:
            raise InvalidOperationError("Voter identity must not be empty")
        if self._lookup_voter(identity) is not None:
            raise AlreadyRegisteredError(f"{identity} is already registered")

        voter = Voter(is_registered=True)
        self._voters[identity] = voter
        logger.info("Registered voter %s", identity)
        self._emit(VoterRegistered(voter=identity))
        return replace(voter)

    @synchronized
    def revoke_voter(self, caller, identity):
        self._only_administrator(caller)
        voter = self._lookup_voter(identity)
        if voter is None:
            raise NotRegisteredError(f"{identity} is not a registered voter")

        if voter.has_voted:
            self._proposals[voter.voted_proposal_id].vote_count -= 1
        del self._voters[identity]

        previous_winner = self._winning_proposal_id
        if self._status is WorkflowStatus.VOTES_TALLIED:
            self._winning_proposal_id = self._select_winner()

        logger.info("Revoked voter %s", identity)
        self._emit(VoterRevoked(voter=identity))
        if self._winning_proposal_id != previous_winner:
            logger.info(
                "Winner changed from proposal %s to %s after revocation",
                previous_winner, self._winning_proposal_id,
            )
            self._emit(WinnerRecomputed(
                previous_winner=previous_winner,
                winning_proposal_id=self._winning_proposal_id,
            ))

    # ------------------------------ workflow ------------------------------- #

    def _advance(self, caller, transition) -> WorkflowStatus:
        source, target = TRANSITIONS[transition]
        self._only_administrator(caller)
        self._require_status(source)

        previous = self._status
        self._status = target
        logger.info("Workflow status changed from %s to %s", previous.name, target.name)
        self._emit(WorkflowStatusChange(previous_status=previous, new_status=target))
        return target

    @synchronized
    def start_proposals_registration(self, caller) -> WorkflowStatus:
        return self._advance(caller, "start_proposals_registration")

    @synchronized
    def end_proposals_registration(self, caller) -> WorkflowStatus:
        return self._advance(caller, "end_proposals_registration")

    @synchronized
    def start_voting_session(self, caller) -> WorkflowStatus:
        return self._advance(caller, "start_voting_session")

    @synchronized
    def end_voting_session(self, caller) -> WorkflowStatus:
        return self._advance(caller, "end_voting_session")

    @synchronized
    def tally_votes(self, caller) -> int:
        """Close the session and pick the winner; ties go to the lowest proposal id."""
        source, target = TRANSITIONS["tally_votes"]
        self._only_administrator(caller)
        self._require_status(source)
        winning_id = self._select_winner()

        self._winning_proposal_id = winning_id
        self._status = target
        logger.info("Votes tallied, winning proposal is %d", winning_id)
        self._emit(WorkflowStatusChange(previous_status=source, new_status=target))
        return winning_id

    def _select_winner(self) -> int:
        if not self._proposals:
            raise InvalidOperationError("Cannot tally a session without proposals")
        winning_id = 0
        for proposal_id, proposal in enumerate(self._proposals):
            # Equal counts keep the earlier proposal.
            if proposal.vote_count > self._proposals[winning_id].vote_count:
                winning_id = proposal_id
        return winning_id

    @synchronized
    def reset_session(self, caller) -> WorkflowStatus:
        """
        Rewind the session to voter registration.

        Proposals, ballots and the published winner are cleared. The voter
        registry is kept so the next round starts with the same electorate.
        """
        self._only_administrator(caller)

        previous = self._status
        cleared_proposals = len(self._proposals)
        cleared_votes = 0
        for voter in self._voters.values():
            if voter.has_voted:
                cleared_votes += 1
            voter.has_voted = False
            voter.voted_proposal_id = None
        self._proposals = []
        self._winning_proposal_id = None
        self._status = WorkflowStatus.REGISTERING_VOTERS

        logger.info(
            "Session reset from %s: %d proposals and %d votes cleared",
            previous.name, cleared_proposals, cleared_votes,
        )
        self._emit(WorkflowStatusChange(previous_status=previous, new_status=self._status))
        self._emit(SessionReset(cleared_proposals=cleared_proposals, cleared_votes=cleared_votes))
        return self._status

    # ------------------------- proposals and votes ------------------------- #

    @synchronized
    def add_proposal(self, caller, description, value=0) -> int:
        self._only_voters(caller)
        self._require_status(WorkflowStatus.PROPOSALS_REGISTRATION_STARTED)
        if not description:
            raise InvalidOperationError("Proposal description must not be empty")

        if value:
            logger.debug("Ignoring value transfer of %s attached by %s", value, caller)
        self._proposals.append(Proposal(description=description))
        proposal_id = len(self._proposals) - 1
        logger.info("Voter %s registered proposal %d", caller, proposal_id)
        self._emit(ProposalRegistered(proposal_id=proposal_id))
        return proposal_id

    @synchronized
    def add_vote(self, caller, proposal_id, value=0):
        voter = self._only_voters(caller)
        self._require_status(WorkflowStatus.VOTING_SESSION_STARTED)
        if voter.has_voted:
            raise AlreadyVotedError(f"{caller} has already voted")
        if isinstance(proposal_id, bool) or not isinstance(proposal_id, int) \
                or not 0 <= proposal_id < len(self._proposals):
            raise InvalidProposalError(f"Proposal {proposal_id} does not exist")

        if value:
            logger.debug("Ignoring value transfer of %s attached by %s", value, caller)
        voter.has_voted = True
        voter.voted_proposal_id = proposal_id
        self._proposals[proposal_id].vote_count += 1
        logger.info("Voter %s voted for proposal %d", caller, proposal_id)
        self._emit(Voted(voter=caller, proposal_id=proposal_id))

    # ------------------------------ queries -------------------------------- #

    @synchronized
    def get_proposals(self, caller) -> List[Proposal]:
        self._only_voters(caller)
        return [replace(proposal) for proposal in self._proposals]

    @synchronized
    def get_voter(self, caller, identity) -> Voter:
        self._only_voters(caller)
        voter = self._lookup_voter(identity)
        if voter is None:
            raise NotRegisteredError(f"{identity} is not a registered voter")
        return replace(voter)

    @synchronized
    def get_winner(self, caller) -> Proposal:
        self._only_voters(caller)
        self._require_status(WorkflowStatus.VOTES_TALLIED)
        return replace(self._proposals[self._winning_proposal_id])

    def get_session_state_description(self) -> str:
        return describe_status(self._status)

    @synchronized
    def find_proposal_id(self, description) -> int:
        for proposal_id, proposal in enumerate(self._proposals):
            if proposal.description == description:
                return proposal_id
        raise ProposalNotFoundError(f"No proposal described as {description!r}")
