"""
Web server for practicelog - JSON API for the current session, history, goals and settings.
"""
import logging
import threading
import time
from typing import Optional

from flask import Flask, jsonify, request
from flask_socketio import SocketIO
from werkzeug.serving import make_server

from practicelog.audio import AudioSourceUnavailable
from practicelog.classifier import ClassifierUnavailable
from practicelog.session import format_practice_duration

logger = logging.getLogger(__name__)


class PracticelogWebServer:
    """Web server for practicelog with real-time updates via WebSocket."""

    def __init__(self, practice_tracker, host='0.0.0.0', port=5000):
        """
        Initialize web server.

        Args:
            practice_tracker: Reference to PracticeTracker instance
            host: Host to bind to
            port: Port to bind to
        """
        self.practice_tracker = practice_tracker
        self.host = host
        self.port = port

        # Create Flask app
        self.app = Flask(__name__)
        self.app.config['SECRET_KEY'] = 'practicelog-secret-key-change-in-production'
        self.app.json.sort_keys = False

        # Create SocketIO instance
        self.socketio = SocketIO(self.app, cors_allowed_origins='*', async_mode='threading')

        # Setup routes
        self._setup_routes()

        # Thread for running server
        self._http_server = None
        self.server_thread = None
        self.relay_thread = None
        self._subscription = None
        self.running = False

    def _setup_routes(self):
        """Setup Flask routes."""
        tracker = self.practice_tracker

        @self.app.route('/api/status')
        def get_status():
            """Get the current detection state."""
            state = tracker.state_holder.state
            response = state.to_dict()
            response['active'] = tracker.session_active
            response['goalMinutes'] = tracker.timer.goal_minutes
            return jsonify(response)

        @self.app.route('/api/session/start', methods=['POST'])
        def start_session():
            """Start a practice session."""
            data = request.get_json(silent=True) or {}
            goal_ids = data.get('goal_ids')
            if goal_ids is not None:
                if not isinstance(goal_ids, list) or not all(isinstance(g, int) for g in goal_ids):
                    return jsonify({'error': 'goal_ids must be a list of integers'}), 400
                tracker.set_targeted_goals(goal_ids)

            try:
                started = tracker.start_session()
            except (AudioSourceUnavailable, ClassifierUnavailable) as e:
                return jsonify({'success': False, 'error': str(e)}), 503

            if not started:
                return jsonify({'success': False, 'message': 'Session already active'}), 409
            return jsonify({'success': True, 'state': tracker.state_holder.state.to_dict()})

        @self.app.route('/api/session/end', methods=['POST'])
        def end_session():
            """Manually end the current practice session."""
            if not tracker.session_active:
                return jsonify({'success': False, 'message': 'No active session'}), 409

            session = tracker.stop_session()
            return jsonify({
                'success': True,
                'message': 'Session ended',
                'session': session.to_dict() if session else None,
            })

        @self.app.route('/api/sessions/recent')
        def get_recent_sessions():
            """Get recent practice sessions."""
            limit = request.args.get('limit', 10, type=int)
            sessions = tracker.db.get_recent_sessions(limit=limit)
            return jsonify([session.to_dict() for session in sessions])

        @self.app.route('/api/sessions/<int:session_id>', methods=['GET'])
        def get_session(session_id):
            session = tracker.db.get_session(session_id)
            if session is None:
                return jsonify({'error': 'session not found'}), 404
            return jsonify(session.to_dict())

        @self.app.route('/api/sessions/<int:session_id>', methods=['DELETE'])
        def delete_session(session_id):
            """Delete a practice session."""
            deleted = tracker.db.delete_session(session_id)
            return jsonify({'success': deleted})

        @self.app.route('/api/sessions/summary')
        def get_summary():
            """Get daily summary of practice sessions."""
            days = request.args.get('days', 7, type=int)
            summary = tracker.db.get_daily_summary(days=days)
            return jsonify(summary)

        @self.app.route('/api/calendar/<int:year>/<int:month>')
        def get_calendar(year, month):
            """Practice time per day for a month view."""
            if not 1 <= month <= 12:
                return jsonify({'error': 'month must be 1-12'}), 400

            days = tracker.db.get_practice_days_in_month(year, month)
            month_total = tracker.db.get_practice_duration_for_month(year, month)
            lifetime_total = tracker.db.get_lifetime_practice_duration()
            return jsonify({
                'year': year,
                'month': month,
                'days': {str(day): {'practice_time_ms': ms, 'formatted': format_practice_duration(ms)}
                         for day, ms in days.items()},
                'month_total_ms': month_total,
                'month_total': format_practice_duration(month_total),
                'lifetime_total_ms': lifetime_total,
                'lifetime_total': format_practice_duration(lifetime_total),
            })

        @self.app.route('/api/goal', methods=['GET'])
        def get_goal():
            """Get the practice goal in minutes."""
            return jsonify({'goal_minutes': tracker.db.get_goal_minutes()})

        @self.app.route('/api/goal', methods=['POST'])
        def set_goal():
            """Set the practice goal (applies from the next session)."""
            data = request.get_json(silent=True) or {}
            goal_minutes = data.get('goal_minutes')

            if not isinstance(goal_minutes, int) or goal_minutes < 0:
                return jsonify({'error': 'goal_minutes must be an integer >= 0'}), 400

            tracker.db.set_goal_minutes(goal_minutes)
            return jsonify({'success': True, 'goal_minutes': goal_minutes})

        @self.app.route('/api/settings', methods=['GET'])
        def get_settings():
            return jsonify(tracker.db.get_settings())

        @self.app.route('/api/settings', methods=['POST'])
        def update_settings():
            """Update grace period and/or auto-end threshold (milliseconds)."""
            data = request.get_json(silent=True) or {}
            if data.get('reset'):
                tracker.db.reset_settings()
                return jsonify(tracker.db.get_settings())

            setters = {
                'grace_period_ms': tracker.db.set_grace_period_ms,
                'auto_end_threshold_ms': tracker.db.set_auto_end_threshold_ms,
            }
            for key, setter in setters.items():
                if key not in data:
                    continue
                value = data[key]
                if not isinstance(value, int) or not setter(value):
                    return jsonify({'error': f'{key} must be a positive integer'}), 400

            return jsonify(tracker.db.get_settings())

        @self.app.route('/api/goals', methods=['GET'])
        def get_goals():
            """Get technical goals."""
            outstanding = request.args.get('outstanding', 'false').lower() == 'true'
            return jsonify(tracker.db.get_goals(outstanding_only=outstanding))

        @self.app.route('/api/goals', methods=['POST'])
        def add_goal():
            """Add a technical goal."""
            data = request.get_json(silent=True) or {}
            goal_id = tracker.db.add_goal(data.get('description', ''))
            if goal_id is None:
                return jsonify({'error': 'description is required'}), 400
            return jsonify({'success': True, 'id': goal_id})

        @self.app.route('/api/goals/<int:goal_id>', methods=['PUT'])
        def update_goal(goal_id):
            data = request.get_json(silent=True) or {}
            if not tracker.db.update_goal_description(goal_id, data.get('description', '')):
                return jsonify({'error': 'goal not found or description empty'}), 400
            return jsonify({'success': True})

        @self.app.route('/api/goals/<int:goal_id>/achieved', methods=['POST'])
        def set_goal_achieved(goal_id):
            data = request.get_json(silent=True) or {}
            achieved = bool(data.get('achieved', True))
            if not tracker.db.set_goal_achieved(goal_id, achieved):
                return jsonify({'error': 'goal not found'}), 404
            return jsonify({'success': True, 'achieved': achieved})

        @self.app.route('/api/goals/<int:goal_id>', methods=['DELETE'])
        def delete_goal(goal_id):
            return jsonify({'success': tracker.db.delete_goal(goal_id)})

    def notify_session_start(self):
        """Notify clients that a session has started."""
        state = self.practice_tracker.state_holder.state
        self.socketio.emit('session_started', {
            'session_start_time_ms': state.session_start_time_millis,
            'goal_minutes': self.practice_tracker.timer.goal_minutes,
            'timestamp': time.time()
        })

    def notify_session_end(self, session, reason: Optional[str] = None):
        """Notify clients that a session has ended."""
        self.socketio.emit('session_ended', {
            'session': session.to_dict() if session else None,
            'reason': reason,
            'timestamp': time.time()
        })

    def _relay_state(self, subscription):
        """Forward detection state updates to WebSocket clients."""
        for state in subscription:
            try:
                self.socketio.emit('detection_state', state.to_dict())
            except Exception as e:
                logger.error(f"Error emitting detection state: {e}", exc_info=True)

    def start(self):
        """Start the web server in a background thread."""
        if self.running:
            logger.warning("Web server already running")
            return

        try:
            self._http_server = make_server(self.host, self.port, self.app, threaded=True)
        except OSError as e:
            logger.error(f"Web server could not listen on {self.host}:{self.port}: {e}")
            return
        # Port 0 binds an ephemeral port
        self.port = self._http_server.server_address[1]
        self.running = True

        self._subscription = self.practice_tracker.state_holder.subscribe()
        self.relay_thread = threading.Thread(
            target=self._relay_state, args=(self._subscription,), daemon=True, name="state-relay")
        self.relay_thread.start()

        http_server = self._http_server

        def run_server():
            logger.info(f"Starting web server on {self.host}:{self.port}")
            http_server.serve_forever()

        self.server_thread = threading.Thread(target=run_server, daemon=True, name="web-server")
        self.server_thread.start()
        logger.info("Web server started in background thread")

    def stop(self):
        """Stop the web server and the state relay."""
        self.running = False
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

        http_server = self._http_server
        self._http_server = None
        if http_server is not None:
            http_server.shutdown()
            http_server.server_close()
        if self.server_thread is not None:
            self.server_thread.join(timeout=5)
            self.server_thread = None
        logger.info("Web server stopped")
