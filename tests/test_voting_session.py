import threading
import pytest
from votingflow.workflow.session import VotingSession, Voter, Proposal
from votingflow.workflow.phases import WorkflowStatus
from votingflow.workflow import events
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

ADMIN = "0x" + "a" * 40
ALICE = "0x" + "1" * 40
BOB = "0x" + "2" * 40
CAROL = "0x" + "3" * 40
MALLORY = "0x" + "f" * 40


@pytest.fixture
def received():
    return []


@pytest.fixture
def session(received):
    return VotingSession(administrator=ADMIN, listeners=[received.append])


@pytest.fixture
def voting_open(session):
    """Session with three voters and two proposals, voting started."""
    for voter in (ALICE, BOB, CAROL):
        session.register_voter(ADMIN, voter)
    session.start_proposals_registration(ADMIN)
    session.add_proposal(ALICE, "Plant trees")
    session.add_proposal(BOB, "Build a library")
    session.end_proposals_registration(ADMIN)
    session.start_voting_session(ADMIN)
    return session


def advance_to(session, status):
    steps = [
        session.start_proposals_registration,
        session.end_proposals_registration,
        session.start_voting_session,
        session.end_voting_session,
        session.tally_votes,
    ]
    for step in steps:
        if session.status is status:
            return
        step(ADMIN)


def test_requires_administrator():
    with pytest.raises(ValueError):
        VotingSession(administrator="")


def test_initial_state(session):
    assert session.status is WorkflowStatus.REGISTERING_VOTERS
    assert session.winning_proposal_id is None
    assert session.proposal_count == 0
    assert session.voter_count == 0
    assert session.get_session_state_description() == "Registering voters"


# ---------------------------- voter registry ---------------------------- #

def test_register_voter(session, received):
    voter = session.register_voter(ADMIN, ALICE)
    assert voter == Voter(is_registered=True, has_voted=False, voted_proposal_id=None)
    assert session.is_registered(ALICE)
    assert session.voter_count == 1
    assert received == [events.VoterRegistered(voter=ALICE)]


def test_register_twice_fails(session):
    session.register_voter(ADMIN, ALICE)
    with pytest.raises(AlreadyRegisteredError):
        session.register_voter(ADMIN, ALICE)
    session.register_voter(ADMIN, BOB)
    assert session.voter_count == 2


def test_register_voter_is_admin_only(session, received):
    session.register_voter(ADMIN, ALICE)
    with pytest.raises(NotAuthorizedError):
        session.register_voter(ALICE, BOB)
    assert not session.is_registered(BOB)
    assert len(received) == 1


def test_register_voter_allowed_in_any_phase(session):
    advance_to(session, WorkflowStatus.VOTING_SESSION_STARTED)
    session.register_voter(ADMIN, ALICE)
    assert session.is_registered(ALICE)


def test_revoke_unknown_voter_fails(session):
    with pytest.raises(NotRegisteredError):
        session.revoke_voter(ADMIN, ALICE)


def test_revoke_is_admin_only(session):
    session.register_voter(ADMIN, ALICE)
    session.register_voter(ADMIN, BOB)
    with pytest.raises(NotAuthorizedError):
        session.revoke_voter(BOB, ALICE)
    assert session.is_registered(ALICE)


def test_revoke_removes_voter_rights(session, received):
    session.register_voter(ADMIN, ALICE)
    session.revoke_voter(ADMIN, ALICE)
    assert not session.is_registered(ALICE)
    assert received[-1] == events.VoterRevoked(voter=ALICE)
    session.start_proposals_registration(ADMIN)
    with pytest.raises(NotAuthorizedError):
        session.add_proposal(ALICE, "Too late")


def test_revoked_voter_can_register_again(session):
    session.register_voter(ADMIN, ALICE)
    session.revoke_voter(ADMIN, ALICE)
    voter = session.register_voter(ADMIN, ALICE)
    assert voter.is_registered and not voter.has_voted


def test_revoke_reverses_vote(voting_open):
    voting_open.add_vote(ALICE, 1)
    voting_open.add_vote(BOB, 1)
    assert voting_open.get_proposals(CAROL)[1].vote_count == 2

    voting_open.revoke_voter(ADMIN, ALICE)
    assert voting_open.get_proposals(CAROL)[1].vote_count == 1


# ------------------------------- workflow ------------------------------- #

def test_full_workflow_in_order(session, received):
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    session.add_proposal(ALICE, "Only option")
    session.end_proposals_registration(ADMIN)
    session.start_voting_session(ADMIN)
    session.add_vote(ALICE, 0)
    session.end_voting_session(ADMIN)
    assert session.tally_votes(ADMIN) == 0
    assert session.status is WorkflowStatus.VOTES_TALLIED

    changes = [e for e in received if isinstance(e, events.WorkflowStatusChange)]
    assert [(c.previous_status, c.new_status) for c in changes] == [
        (WorkflowStatus.REGISTERING_VOTERS, WorkflowStatus.PROPOSALS_REGISTRATION_STARTED),
        (WorkflowStatus.PROPOSALS_REGISTRATION_STARTED, WorkflowStatus.PROPOSALS_REGISTRATION_ENDED),
        (WorkflowStatus.PROPOSALS_REGISTRATION_ENDED, WorkflowStatus.VOTING_SESSION_STARTED),
        (WorkflowStatus.VOTING_SESSION_STARTED, WorkflowStatus.VOTING_SESSION_ENDED),
        (WorkflowStatus.VOTING_SESSION_ENDED, WorkflowStatus.VOTES_TALLIED),
    ]


@pytest.mark.parametrize("method", [
    "end_proposals_registration",
    "start_voting_session",
    "end_voting_session",
    "tally_votes",
])
def test_out_of_order_transition_fails(session, received, method):
    with pytest.raises(WrongPhaseError) as excinfo:
        getattr(session, method)(ADMIN)
    assert excinfo.value.current is WorkflowStatus.REGISTERING_VOTERS
    assert session.status is WorkflowStatus.REGISTERING_VOTERS
    assert received == []


def test_transition_cannot_be_repeated(session):
    session.start_proposals_registration(ADMIN)
    with pytest.raises(WrongPhaseError):
        session.start_proposals_registration(ADMIN)
    assert session.status is WorkflowStatus.PROPOSALS_REGISTRATION_STARTED


def test_transition_is_admin_only(session):
    session.register_voter(ADMIN, ALICE)
    with pytest.raises(NotAuthorizedError):
        session.start_proposals_registration(ALICE)
    assert session.status is WorkflowStatus.REGISTERING_VOTERS


def test_state_descriptions(session):
    labels = [session.get_session_state_description()]
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    labels.append(session.get_session_state_description())
    session.add_proposal(ALICE, "P")
    for step in (session.end_proposals_registration, session.start_voting_session,
                 session.end_voting_session, session.tally_votes):
        step(ADMIN)
        labels.append(session.get_session_state_description())
    assert labels == [
        "Registering voters",
        "Proposals registration started",
        "Proposals registration ended",
        "Voting session started",
        "Voting session ended",
        "Votes tallied",
    ]


# ------------------------------ proposals ------------------------------- #

def test_add_proposal_and_find_it(session, received):
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    proposal_id = session.add_proposal(ALICE, "X")
    assert session.find_proposal_id("X") == proposal_id
    assert session.get_proposals(ALICE) == [Proposal(description="X", vote_count=0)]
    assert received[-1] == events.ProposalRegistered(proposal_id=0)


def test_duplicate_descriptions_get_distinct_ids(session):
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    assert session.add_proposal(ALICE, "Same") == 0
    assert session.add_proposal(ALICE, "Other") == 1
    assert session.add_proposal(ALICE, "Same") == 2
    assert session.find_proposal_id("Same") == 0


def test_find_missing_proposal(session):
    with pytest.raises(ProposalNotFoundError):
        session.find_proposal_id("nothing")


def test_add_proposal_requires_registered_voter(session):
    session.start_proposals_registration(ADMIN)
    with pytest.raises(NotAuthorizedError):
        session.add_proposal(MALLORY, "Spam")
    with pytest.raises(NotAuthorizedError):
        session.add_proposal(ADMIN, "Admin is not a voter")
    assert session.proposal_count == 0


def test_add_proposal_outside_phase(session):
    session.register_voter(ADMIN, ALICE)
    with pytest.raises(WrongPhaseError):
        session.add_proposal(ALICE, "Early")
    assert session.proposal_count == 0


def test_add_empty_proposal_fails(session):
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    with pytest.raises(InvalidOperationError):
        session.add_proposal(ALICE, "")


def test_value_transfer_is_ignored(session):
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    session.add_proposal(ALICE, "Paid", value=10 ** 18)
    session.end_proposals_registration(ADMIN)
    session.start_voting_session(ADMIN)
    session.add_vote(ALICE, 0, value=5)
    assert session.get_proposals(ALICE)[0].vote_count == 1


def test_proposal_snapshots_are_copies(voting_open):
    proposals = voting_open.get_proposals(ALICE)
    proposals[0].vote_count = 99
    proposals.append(Proposal("Injected"))
    assert voting_open.get_proposals(ALICE)[0].vote_count == 0
    assert voting_open.proposal_count == 2


# -------------------------------- votes --------------------------------- #

def test_add_vote(voting_open, received):
    voting_open.add_vote(ALICE, 1)
    voter = voting_open.get_voter(BOB, ALICE)
    assert voter.has_voted and voter.voted_proposal_id == 1
    assert voting_open.get_proposals(ALICE)[1].vote_count == 1
    assert received[-1] == events.Voted(voter=ALICE, proposal_id=1)


def test_second_vote_fails(voting_open):
    voting_open.add_vote(ALICE, 0)
    with pytest.raises(AlreadyVotedError):
        voting_open.add_vote(ALICE, 1)
    counts = [p.vote_count for p in voting_open.get_proposals(ALICE)]
    assert counts == [1, 0]


@pytest.mark.parametrize("proposal_id", [2, -1, 100, True, False, "0", 1.0])
def test_vote_for_missing_proposal(voting_open, proposal_id):
    with pytest.raises(InvalidProposalError):
        voting_open.add_vote(ALICE, proposal_id)
    assert not voting_open.get_voter(ALICE, ALICE).has_voted


def test_vote_requires_registered_voter(voting_open):
    with pytest.raises(NotAuthorizedError):
        voting_open.add_vote(MALLORY, 0)
    assert [p.vote_count for p in voting_open.get_proposals(ALICE)] == [0, 0]


def test_vote_outside_phase(voting_open):
    voting_open.end_voting_session(ADMIN)
    with pytest.raises(WrongPhaseError):
        voting_open.add_vote(ALICE, 0)


# -------------------------------- tally --------------------------------- #

def cast(session, votes):
    """Register one fresh voter per ballot and cast it."""
    for number, proposal_id in enumerate(votes):
        identity = "0x%040x" % (number + 1000)
        session.register_voter(ADMIN, identity)
        session.add_vote(identity, proposal_id)


def test_tally_tie_goes_to_lowest_index(session):
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    for description in ("A", "B", "C", "D"):
        session.add_proposal(ALICE, description)
    session.end_proposals_registration(ADMIN)
    session.start_voting_session(ADMIN)
    cast(session, [0] * 3 + [1] * 5 + [2] * 5 + [3] * 2)
    session.end_voting_session(ADMIN)

    assert session.tally_votes(ADMIN) == 1
    winner = session.get_winner(ALICE)
    assert winner == Proposal(description="B", vote_count=5)


def test_tally_without_votes_picks_first(voting_open):
    voting_open.end_voting_session(ADMIN)
    assert voting_open.tally_votes(ADMIN) == 0


def test_tally_without_proposals_fails(session):
    advance_to(session, WorkflowStatus.VOTING_SESSION_ENDED)
    with pytest.raises(InvalidOperationError):
        session.tally_votes(ADMIN)
    assert session.status is WorkflowStatus.VOTING_SESSION_ENDED
    assert session.winning_proposal_id is None


def test_tally_is_admin_only(voting_open):
    voting_open.end_voting_session(ADMIN)
    with pytest.raises(NotAuthorizedError):
        voting_open.tally_votes(ALICE)
    assert voting_open.status is WorkflowStatus.VOTING_SESSION_ENDED


def test_get_winner_before_tally(voting_open):
    with pytest.raises(WrongPhaseError):
        voting_open.get_winner(ALICE)


def test_revoke_after_tally_recomputes_winner(voting_open, received):
    voting_open.add_vote(ALICE, 1)
    voting_open.add_vote(BOB, 1)
    voting_open.add_vote(CAROL, 0)
    voting_open.end_voting_session(ADMIN)
    assert voting_open.tally_votes(ADMIN) == 1

    voting_open.revoke_voter(ADMIN, ALICE)
    # 1 vote each now, the lower index wins the tie
    assert voting_open.winning_proposal_id == 0
    assert voting_open.get_winner(CAROL) == Proposal(description="Plant trees", vote_count=1)
    assert voting_open.status is WorkflowStatus.VOTES_TALLIED
    assert received[-1] == events.WinnerRecomputed(previous_winner=1, winning_proposal_id=0)


def test_revoke_after_tally_keeps_unchanged_winner(voting_open, received):
    voting_open.add_vote(ALICE, 1)
    voting_open.add_vote(BOB, 1)
    voting_open.end_voting_session(ADMIN)
    voting_open.tally_votes(ADMIN)

    voting_open.revoke_voter(ADMIN, CAROL)
    assert voting_open.winning_proposal_id == 1
    assert received[-1] == events.VoterRevoked(voter=CAROL)


# ------------------------------- queries -------------------------------- #

def test_queries_require_registered_voter(voting_open):
    with pytest.raises(NotAuthorizedError):
        voting_open.get_proposals(MALLORY)
    with pytest.raises(NotAuthorizedError):
        voting_open.get_voter(MALLORY, ALICE)
    with pytest.raises(NotAuthorizedError):
        voting_open.get_winner(MALLORY)


def test_get_unknown_voter(voting_open):
    with pytest.raises(NotRegisteredError):
        voting_open.get_voter(ALICE, MALLORY)


def test_snapshot(voting_open):
    assert voting_open.snapshot() == {
        "status": "VOTING_SESSION_STARTED",
        "description": "Voting session started",
        "proposal_count": 2,
        "voter_count": 3,
        "winning_proposal_id": None,
    }


# -------------------------------- reset --------------------------------- #

def test_reset_clears_round_but_keeps_voters(voting_open, received):
    voting_open.add_vote(ALICE, 0)
    voting_open.end_voting_session(ADMIN)
    voting_open.tally_votes(ADMIN)

    assert voting_open.reset_session(ADMIN) is WorkflowStatus.REGISTERING_VOTERS
    assert voting_open.proposal_count == 0
    assert voting_open.winning_proposal_id is None
    assert voting_open.voter_count == 3
    assert voting_open.get_voter(ALICE, ALICE) == Voter(is_registered=True)
    assert received[-2] == events.WorkflowStatusChange(
        previous_status=WorkflowStatus.VOTES_TALLIED,
        new_status=WorkflowStatus.REGISTERING_VOTERS,
    )
    assert received[-1] == events.SessionReset(cleared_proposals=2, cleared_votes=1)


def test_reset_is_admin_only(voting_open):
    with pytest.raises(NotAuthorizedError):
        voting_open.reset_session(ALICE)
    assert voting_open.status is WorkflowStatus.VOTING_SESSION_STARTED


def test_failing_listener_does_not_undo_change(session):
    def broken(event):
        raise RuntimeError("sink down")

    session.subscribe(broken)
    session.register_voter(ADMIN, ALICE)
    assert session.is_registered(ALICE)


def test_listeners_run_outside_session_lock(session):
    lock_free = []

    def try_lock():
        acquired = session._lock.acquire(blocking=False)
        if acquired:
            session._lock.release()
        lock_free.append(acquired)

    def check_lock(event):
        # Another thread must be able to take the session lock while listeners run.
        reader = threading.Thread(target=try_lock)
        reader.start()
        reader.join()

    session.subscribe(check_lock)
    session.register_voter(ADMIN, ALICE)
    session.start_proposals_registration(ADMIN)
    assert lock_free == [True, True]


def test_listener_can_call_back_into_session(session, received):
    seen = []

    def reentrant(event):
        seen.append((event.event_type, session.snapshot()["voter_count"]))
        if isinstance(event, events.VoterRegistered) and event.voter == ALICE:
            session.register_voter(ADMIN, BOB)

    session.subscribe(reentrant)
    session.register_voter(ADMIN, ALICE)
    assert seen == [("voter_registered", 1), ("voter_registered", 2)]
    assert received == [events.VoterRegistered(voter=ALICE), events.VoterRegistered(voter=BOB)]


def test_concurrent_changes_are_delivered_in_commit_order(session, received):
    voters = ["0x" + format(n, "040x") for n in range(1, 41)]

    def register(chunk):
        for voter in chunk:
            session.register_voter(ADMIN, voter)

    threads = [threading.Thread(target=register, args=(voters[i::4],)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    registered = [event.voter for event in received]
    assert sorted(registered) == sorted(voters)
    assert session.voter_count == 40
    # Each worker's own registrations reach listeners in the order it made them
    for i in range(4):
        mine = [voter for voter in registered if voter in voters[i::4]]
        assert mine == voters[i::4]
