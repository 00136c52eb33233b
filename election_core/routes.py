# election_core/routes.py

# HTTP surface of the election core. Voting-station endpoints are public and
# rate limited; administrative endpoints need a JWT whose role passes the
# access-control matrix.

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_jwt_extended import jwt_required
from werkzeug.exceptions import HTTPException

from election_core import db, limiter
from election_core.audit.audit_logger import get_audit_logger
from election_core.authentication.access_control import (
    Action,
    Resource,
    check_permission,
    require_permission,
    seed_default_roles,
)
from election_core.authentication.token_manager import TokenManager
from election_core.clock import get_clock
from election_core.election.manager import (
    create_election,
    election_summary,
    set_current_election,
    set_results_published,
)
from election_core.election.phase import phase_status
from election_core.election.snapshot import current_election_snapshot
from election_core.errors import ElectionCoreError
from election_core.security.input_validator import InputValidator
from election_core.tabulation.analytics import (
    detailed_vote_analysis,
    election_stats,
    voting_patterns,
    voting_timeline,
)
from election_core.tabulation.results import election_results, position_results
from election_core.voting.casting import cast_ballot, validate_voter
from election_core.voting.eligibility import candidates_for_voter
from election_core.voting.receipts import verify_receipt
from election_core.voting.registry import register_voter, remove_voter

logger = logging.getLogger(__name__)

api = Blueprint('api', __name__)
validator = InputValidator()
token_manager = TokenManager()


def _ballot_rate_limit():
    return current_app.config['BALLOT_RATE_LIMIT']


def _json_body():
    return request.get_json(silent=True) or {}


@api.route('/phase', methods=['GET'])
def get_phase():
    snapshot = current_election_snapshot()
    status = phase_status(snapshot.window if snapshot else None, get_clock().now())
    status['election'] = {'id': snapshot.election_id, 'title': snapshot.title} if snapshot else None
    return jsonify(status)


@api.route('/voters/validate', methods=['POST'])
@limiter.limit(_ballot_rate_limit)
def validate_voter_route():
    voter = validate_voter(_json_body().get('voterId'))
    return jsonify({'success': True, 'voter': voter})


@api.route('/candidates/for-voter', methods=['GET'])
def candidates_for_voter_route():
    positions = candidates_for_voter(request.args.get('voterId'))
    return jsonify({'success': True, 'positions': positions})


@api.route('/votes/submit', methods=['POST'])
@limiter.limit(_ballot_rate_limit)
def submit_vote():
    payload = _json_body()
    selections, abstentions = validator.normalize_ballot_payload(payload)
    receipt = cast_ballot(payload.get('voterId'), selections, abstentions)
    body = {'success': True}
    body.update(receipt.to_dict())
    return jsonify(body), 201


@api.route('/receipts/verify', methods=['POST'])
def verify_receipt_route():
    return jsonify({'success': True, 'valid': verify_receipt(_json_body().get('receiptToken'))})


@api.route('/results/positions/<ref>', methods=['GET'])
@require_permission(Resource.RESULTS, Action.VIEW)
def position_results_route(ref):
    return jsonify(position_results(ref))


@api.route('/results', methods=['GET'])
@require_permission(Resource.RESULTS, Action.VIEW)
def election_results_route():
    return jsonify(election_results())


@api.route('/analytics/voting-patterns', methods=['GET'])
@require_permission(Resource.DVA, Action.VIEW)
def voting_patterns_route():
    return jsonify(voting_patterns(
        position_id=request.args.get('positionId'),
        date_from=request.args.get('from') or None,
        date_to=request.args.get('to') or None,
    ))


@api.route('/analytics/timeline', methods=['GET'])
@require_permission(Resource.DVA, Action.VIEW)
def voting_timeline_route():
    return jsonify({'timeline': voting_timeline()})


@api.route('/analytics/detailed', methods=['GET'])
@require_permission(Resource.DVA, Action.VIEW)
def detailed_vote_analysis_route():
    return jsonify({'voters': detailed_vote_analysis(
        date_from=request.args.get('from') or None,
        date_to=request.args.get('to') or None,
    )})


@api.route('/elections/stats', methods=['GET'])
@require_permission(Resource.DASHBOARD, Action.VIEW)
def election_stats_route():
    return jsonify(election_stats())


@api.route('/elections', methods=['POST'])
@require_permission(Resource.ELECTIONS, Action.ADD)
def create_election_route():
    data = _json_body()
    election = create_election(
        title=data.get('title'),
        start_date=data.get('startDate'),
        start_time=data.get('startTime'),
        end_time=data.get('endTime'),
        end_date=data.get('endDate'),
        timezone=data.get('timezone') or 'UTC',
        make_current=bool(data.get('isCurrent')),
    )
    return jsonify({'success': True, 'election': election_summary(election)}), 201


@api.route('/elections/<int:election_id>/current', methods=['POST'])
@require_permission(Resource.ELECTIONS, Action.EDIT)
def set_current_election_route(election_id):
    election = set_current_election(election_id)
    return jsonify({'success': True, 'election': election_summary(election)})


@api.route('/elections/current/results-publication', methods=['POST'])
@require_permission(Resource.RESULTS, Action.EDIT)
def results_publication_route():
    election = set_results_published(_json_body().get('published'))
    return jsonify({'success': True, 'resultsPublished': election.results_published})


@api.route('/voters', methods=['POST'])
@require_permission(Resource.VOTERS, Action.ADD)
def register_voter_route():
    data = _json_body()
    election_id = data.get('electionId')
    if election_id is None:
        snapshot = current_election_snapshot()
        if snapshot is None:
            raise ValueError('electionId is required when no election is current')
        election_id = snapshot.election_id
    voter = register_voter(
        name=data.get('name'),
        election_id=election_id,
        class_name=data.get('class'),
        year=data.get('year'),
        house=data.get('house'),
        gender=data.get('gender'),
    )
    return jsonify({'success': True, 'voter': {'voterId': voter.voter_id, 'name': voter.name}}), 201


@api.route('/voters/<voter_id>', methods=['DELETE'])
@require_permission(Resource.VOTERS, Action.DELETE)
def remove_voter_route(voter_id):
    remove_voter(voter_id)
    return jsonify({'success': True})


@api.route('/roles/seed', methods=['POST'])
@require_permission(Resource.ROLES, Action.ADD)
def seed_roles_route():
    return jsonify({'success': True, 'created': seed_default_roles()})


@api.route('/permissions/check', methods=['GET'])
@jwt_required()
def check_permission_route():
    username, role = token_manager.current_principal()
    granted = check_permission(role, request.args.get('resource'), request.args.get('action'))
    return jsonify({'success': True, 'user': username, 'role': role, 'allowed': granted})


def register_error_handlers(app):
    @app.errorhandler(ElectionCoreError)
    def handle_core_error(error):
        db.session.rollback()
        if error.http_status >= 500:
            logger.error('%s: %s', error.error_code, error.message)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValueError)
    def handle_bad_request(error):
        db.session.rollback()
        return jsonify({'success': False, 'errorCode': 'BAD_REQUEST', 'message': str(error)}), 400

    @app.errorhandler(Exception)
    def handle_unexpected(error):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        get_audit_logger().log_activity(
            'server_error', details={'path': request.path, 'error': type(error).__name__}
        )
        return jsonify({'success': False, 'message': 'Internal server error'}), 500
