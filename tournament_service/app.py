import logging
import math
import os

from flask import Flask, request, jsonify, g

from shared.errors import TournamentError, ValidationError
from shared.pubsub import EventPublisher
from .auth import require_auth
from .config import config
from .models import db
from .store import TournamentStore

logger = logging.getLogger(__name__)


def create_app(config_name: str = None) -> Flask:
    """Application factory for the tournament service."""
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])

    db.init_app(app)

    with app.app_context():
        db.create_all()

    app.store = TournamentStore(EventPublisher.from_url(app.config.get('REDIS_URL')))

    register_error_handlers(app)
    register_api_routes(app)

    return app


def register_error_handlers(app: Flask):

    @app.errorhandler(TournamentError)
    def handle_tournament_error(error: TournamentError):
        if error.http_status >= 500:
            logger.error(f"{request.method} {request.path} failed: {error.message}")
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(404)
    def handle_not_found(error):
        return jsonify({'error': 'ROUTE_NOT_FOUND', 'message': 'Route not found'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(error):
        return jsonify({'error': 'METHOD_NOT_ALLOWED', 'message': 'Method not allowed'}), 405


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError(details=["request body must be a JSON object"])
    return data


def _int_arg(name: str, default: int, minimum: int = 1, maximum: int = None) -> int:
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValidationError(details=[f"{name} must be an integer"])
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"between {minimum} and {maximum}" if maximum else f"at least {minimum}"
        raise ValidationError(details=[f"{name} must be {bounds}"])
    return value


def register_api_routes(app: Flask):
    """Register API routes."""

    # ==================== Tournament CRUD ====================

    @app.route('/api/v1/tournaments', methods=['GET'])
    def api_list_tournaments():
        """List tournaments with optional filtering and pagination."""
        status = request.args.get('status')
        statuses = [s.strip() for s in status.split(',') if s.strip()] if status else None
        page = _int_arg('page', 1)
        limit = _int_arg('limit', app.config['DEFAULT_PAGE_SIZE'], maximum=app.config['MAX_PAGE_SIZE'])

        tournaments, total = app.store.list_tournaments(
            statuses=statuses,
            game_type=request.args.get('game_type'),
            tournament_type=request.args.get('type'),
            start_time=request.args.get('start_time'),
            page=page,
            limit=limit,
            sort_by=request.args.get('sort_by', 'start_time'),
            sort_order=request.args.get('sort_order', 'asc')
        )

        return jsonify({
            'tournaments': [t.to_dict(detail=False) for t in tournaments],
            'count': len(tournaments),
            'total': total,
            'page': page,
            'limit': limit,
            'total_pages': math.ceil(total / limit) if total else 0
        })

    @app.route('/api/v1/tournaments/upcoming', methods=['GET'])
    def api_upcoming_tournaments():
        limit = _int_arg('limit', 10, maximum=app.config['MAX_PAGE_SIZE'])
        tournaments = app.store.list_upcoming(limit)
        return jsonify({'tournaments': [t.to_dict(detail=False) for t in tournaments]})

    @app.route('/api/v1/tournaments/live', methods=['GET'])
    def api_live_tournaments():
        tournaments = app.store.list_live()
        return jsonify({'tournaments': [t.to_dict() for t in tournaments]})

    @app.route('/api/v1/tournaments', methods=['POST'])
    @require_auth(role='admin')
    def api_create_tournament():
        """Create a new tournament."""
        tournament = app.store.create_tournament(_json_body(), created_by=g.principal['user_id'])
        logger.info(f"Tournament {tournament.tournament_id} created by {g.principal.get('username')}")
        return jsonify({
            'message': 'Tournament created',
            'tournament': tournament.to_dict()
        }), 201

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['GET'])
    def api_get_tournament(tournament_id: str):
        """Get tournament details."""
        return jsonify(app.store.get_tournament(tournament_id).to_dict())

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['PUT'])
    @require_auth(role='admin')
    def api_update_tournament(tournament_id: str):
        tournament = app.store.update_tournament(tournament_id, _json_body())
        return jsonify({'message': 'Tournament updated', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>', methods=['DELETE'])
    @require_auth(role='admin')
    def api_delete_tournament(tournament_id: str):
        app.store.delete_tournament(tournament_id)
        return jsonify({'message': 'Tournament deleted'})

    # ==================== Tournament Lifecycle ====================

    @app.route('/api/v1/tournaments/<tournament_id>/status', methods=['POST'])
    @require_auth(role='admin')
    def api_update_status(tournament_id: str):
        """Time-driven status update (registration_open, registration_closed, live)."""
        target = _json_body().get('status')
        tournament = app.store.advance_status(tournament_id, target)
        return jsonify({'message': f'Status updated to {tournament.status}', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/open', methods=['POST'])
    @require_auth(role='admin')
    def api_open_registration(tournament_id: str):
        tournament = app.store.open_registration(tournament_id)
        return jsonify({'message': 'Registration opened', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/close', methods=['POST'])
    @require_auth(role='admin')
    def api_close_registration(tournament_id: str):
        tournament = app.store.close_registration(tournament_id, force=True)
        return jsonify({'message': 'Registration closed', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/start', methods=['POST'])
    @require_auth(role='admin')
    def api_start_tournament(tournament_id: str):
        """Early start, allowed once the auto-start threshold is met."""
        tournament = app.store.start_tournament(tournament_id)
        return jsonify({'message': 'Tournament started', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/end', methods=['POST'])
    @require_auth(role='admin')
    def api_end_tournament(tournament_id: str):
        tournament = app.store.end_tournament(tournament_id)
        return jsonify({'message': 'Tournament completed', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/cancel', methods=['POST'])
    @require_auth(role='admin')
    def api_cancel_tournament(tournament_id: str):
        tournament = app.store.cancel_tournament(tournament_id, _json_body().get('reason'))
        return jsonify({'message': 'Tournament cancelled', 'tournament': tournament.to_dict()})

    # ==================== Registration ====================

    @app.route('/api/v1/tournaments/<tournament_id>/register', methods=['POST'])
    @require_auth()
    def api_register(tournament_id: str):
        """Register the calling user for a tournament."""
        tournament = app.store.add_participant(
            tournament_id, g.principal['user_id'], g.principal.get('username')
        )
        return jsonify({'message': 'Successfully registered for tournament', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/register', methods=['DELETE'])
    @require_auth()
    def api_unregister(tournament_id: str):
        tournament = app.store.remove_participant(tournament_id, g.principal['user_id'])
        return jsonify({'message': 'Successfully unregistered from tournament', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/check-in', methods=['POST'])
    @require_auth()
    def api_check_in(tournament_id: str):
        tournament = app.store.confirm_participant(tournament_id, g.principal['user_id'])
        return jsonify({'message': 'Checked in', 'tournament': tournament.to_dict()})

    @app.route('/api/v1/tournaments/<tournament_id>/participants/<user_id>/<action>', methods=['POST'])
    @require_auth(role='admin')
    def api_participant_action(tournament_id: str, user_id: str, action: str):
        operations = {
            'confirm': app.store.confirm_participant,
            'withdraw': app.store.withdraw_participant,
            'disqualify': app.store.disqualify_participant,
            'paid': app.store.mark_entry_fee_paid,
        }
        if action not in operations:
            return jsonify({'error': 'ROUTE_NOT_FOUND', 'message': f'Unknown participant action {action}'}), 404
        tournament = operations[action](tournament_id, user_id)
        return jsonify({'message': f'Participant {action} applied', 'tournament': tournament.to_dict()})

    # ==================== Match stubs ====================

    @app.route('/api/v1/tournaments/<tournament_id>/matches', methods=['POST'])
    @require_auth(role='admin')
    def api_add_match(tournament_id: str):
        data = _json_body()
        tournament = app.store.add_match(tournament_id, data.get('round'), data.get('participants', []))
        return jsonify({'message': 'Match created', 'tournament': tournament.to_dict()}), 201

    @app.route('/api/v1/tournaments/<tournament_id>/matches/<int:match_number>/result', methods=['POST'])
    @require_auth(role='admin')
    def api_match_result(tournament_id: str, match_number: int):
        data = _json_body()
        tournament = app.store.record_match_result(
            tournament_id,
            match_number,
            data.get('status', 'completed'),
            scores=data.get('scores'),
            winner_id=data.get('winner')
        )
        return jsonify({'message': 'Match updated', 'tournament': tournament.to_dict()})

    # ==================== Health Check ====================

    @app.route('/health')
    def health_check():
        """Health check endpoint."""
        health = app.store.health()
        code = 200 if health['status'] == 'healthy' else 503
        return jsonify(health), code
