# votingflow/routes.py

# JSON API over the voting session. Every operation authenticates the caller
# with a bearer JWT and is checked against its permission up front; the
# session itself still enforces roles and phases.

from flask import Blueprint, abort, current_app, g, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from votingflow import db, limiter
from votingflow.authentication.mfa import MFAService
from votingflow.authentication.rbac import Permission, require_permission
from votingflow.database.models import Account
from votingflow.encryption.password_hashing import PasswordHashingService
from votingflow.security.input_validator import InputValidator
from votingflow.security.token_manager import TokenManager
from votingflow.workflow.errors import VotingError

api = Blueprint('api', __name__)

validator = InputValidator()
password_service = PasswordHashingService()
mfa_service = MFAService()
token_manager = TokenManager()

# URL action -> session method
WORKFLOW_ACTIONS = {
    'start-proposals': 'start_proposals_registration',
    'end-proposals': 'end_proposals_registration',
    'start-voting': 'start_voting_session',
    'end-voting': 'end_voting_session',
    'tally': 'tally_votes',
    'reset': 'reset_session',
}


def voting_session():
    return current_app.extensions['voting_session']


def audit_logger():
    return current_app.extensions['audit_logger']


def current_caller():
    return token_manager.current_identity()


def _json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValueError("Request body must be a JSON object")
    return body


@api.errorhandler(VotingError)
def handle_voting_error(error):
    audit_logger().log_security_event(
        'rejected_call',
        {'endpoint': request.endpoint, 'error': error.kind, 'message': error.message},
        user_id=g.get('caller'),
    )
    return jsonify(error.to_dict()), error.status_code


@api.errorhandler(ValueError)
def handle_invalid_input(error):
    return jsonify({'error': 'invalid_input', 'message': str(error)}), 400


# ------------------------------ public ---------------------------------- #

@api.route('/health')
def health():
    try:
        db.session.execute(text('SELECT 1'))
        database = {'ok': True}
    except SQLAlchemyError as e:
        database = {'ok': False, 'error': str(e)}
    code = 200 if database['ok'] else 503
    return jsonify({'db': database, 'status': voting_session().status.name, 'overall_ok': database['ok']}), code


@api.route('/session')
def session_state():
    return jsonify(voting_session().snapshot())


@api.route('/proposals/lookup')
def find_proposal():
    description = validator.sanitize_description(request.args.get('description', ''))
    proposal_id = voting_session().find_proposal_id(description)
    return jsonify({'proposal_id': proposal_id})


@api.route('/auth/login', methods=['POST'])
@limiter.limit("10/minute")
def login():
    body = _json_body()
    identity = validator.normalize_identity(body.get('identity'))
    password = body.get('password') or ''

    account = Account.find(identity)
    valid, new_hash = (False, None)
    if account:
        valid, new_hash = password_service.verify_and_update(password, account.password_hash)
    if not valid:
        audit_logger().log_security_event('failed_login', {'identity': identity, 'ip': request.remote_addr})
        return jsonify({'error': 'invalid_credentials', 'message': 'Invalid identity or password'}), 401

    is_admin = voting_session().is_administrator(identity)
    if account.mfa_secret or is_admin:
        if not mfa_service.verify(account.mfa_secret, body.get('totp_code')):
            audit_logger().log_security_event('failed_mfa', {'identity': identity, 'ip': request.remote_addr})
            return jsonify({'error': 'invalid_credentials', 'message': 'Invalid MFA code'}), 401

    if new_hash:
        account.password_hash = new_hash
        db.session.commit()

    audit_logger().log_security_event('successful_login', {'identity': identity, 'administrator': is_admin})
    token = token_manager.issue_token(identity, administrator=is_admin)
    return jsonify({'access_token': token, 'identity': identity, 'administrator': is_admin})


# --------------------------- administrator ------------------------------ #

@api.route('/voters', methods=['POST'])
@jwt_required()
@require_permission(Permission.MANAGE_VOTERS)
def register_voter():
    caller = current_caller()
    identity = validator.normalize_identity(_json_body().get('identity'))
    voter = voting_session().register_voter(caller, identity)
    return jsonify({'identity': identity, **voter.as_dict()}), 201


@api.route('/voters/<identity>', methods=['DELETE'])
@jwt_required()
@require_permission(Permission.MANAGE_VOTERS)
def revoke_voter(identity):
    caller = current_caller()
    session = voting_session()
    session.revoke_voter(caller, validator.normalize_identity(identity))
    return jsonify({'revoked': identity.lower(), 'winning_proposal_id': session.winning_proposal_id})


@api.route('/workflow/<action>', methods=['POST'])
@jwt_required()
@require_permission(Permission.MANAGE_WORKFLOW)
def advance_workflow(action):
    if action not in WORKFLOW_ACTIONS:
        abort(404)
    caller = current_caller()
    session = voting_session()
    getattr(session, WORKFLOW_ACTIONS[action])(caller)
    return jsonify(session.snapshot())


@api.route('/audit/verify')
@jwt_required()
@require_permission(Permission.VIEW_AUDIT_LOGS)
def verify_audit_log():
    logger = audit_logger()
    return jsonify({
        'ok': logger.verify_log_integrity(),
        'entries': len(logger.read_entries()),
        'public_key': logger.public_key_pem(),
    })


# ------------------------------ voters ---------------------------------- #

@api.route('/proposals', methods=['POST'])
@jwt_required()
@require_permission(Permission.SUBMIT_PROPOSAL)
def add_proposal():
    caller = current_caller()
    body = _json_body()
    description = validator.sanitize_description(body.get('description'))
    value = validator.validate_value(body.get('value'))
    proposal_id = voting_session().add_proposal(caller, description, value=value)
    return jsonify({'proposal_id': proposal_id, 'description': description}), 201


@api.route('/proposals')
@jwt_required()
@require_permission(Permission.VIEW_SESSION)
def get_proposals():
    caller = current_caller()
    proposals = voting_session().get_proposals(caller)
    return jsonify([dict(proposal.as_dict(), proposal_id=index) for index, proposal in enumerate(proposals)])


@api.route('/votes', methods=['POST'])
@jwt_required()
@limiter.limit(lambda: current_app.config['VOTE_RATE_LIMIT'])
@require_permission(Permission.VOTE)
def add_vote():
    caller = current_caller()
    body = _json_body()
    proposal_id = validator.validate_proposal_id(body.get('proposal_id'))
    value = validator.validate_value(body.get('value'))
    voting_session().add_vote(caller, proposal_id, value=value)
    return jsonify({'voter': caller, 'proposal_id': proposal_id}), 201


@api.route('/voters/<identity>')
@jwt_required()
@require_permission(Permission.VIEW_SESSION)
def get_voter(identity):
    caller = current_caller()
    identity = validator.normalize_identity(identity)
    voter = voting_session().get_voter(caller, identity)
    return jsonify({'identity': identity, **voter.as_dict()})


@api.route('/winner')
@jwt_required()
@require_permission(Permission.VIEW_SESSION)
def get_winner():
    caller = current_caller()
    session = voting_session()
    winner = session.get_winner(caller)
    return jsonify({'proposal_id': session.winning_proposal_id, **winner.as_dict()})
