import logging
import threading
from typing import Dict, Any, Optional
from datetime import datetime
from urllib.parse import urlencode
from flask import Flask, request, jsonify
import requests

from cloudmpd.application.daemon import Daemon
from cloudmpd.crosscutting.config import APP_VERSION, ConfigError, SecretManager, get_secret_manager

SPOTIFY_AUTHORIZE_URL = 'https://accounts.spotify.com/authorize'
SPOTIFY_TOKEN_URL = 'https://accounts.spotify.com/api/token'


class HTTPServer:
    """HTTP side-channel: health, metrics and the Spotify OAuth flow."""

    def __init__(self,
                 daemon: Optional[Daemon] = None,
                 secret_manager: Optional[SecretManager] = None,
                 host: str = 'localhost',
                 port: int = 3000):
        self.daemon = daemon
        self.secret_manager = secret_manager or get_secret_manager()
        self.host = host
        self.port = port
        self.app = Flask(__name__)
        self.logger = logging.getLogger(__name__)
        self.version = APP_VERSION
        self._setup_routes()

    def _spotify_config(self) -> Dict[str, str]:
        # Read on every request so a freshly written .env is picked up
        return self.secret_manager.get_spotify_client_config()

    def _setup_routes(self) -> None:

        @self.app.route('/health', methods=['GET'])
        def health_check():
            body = {
                'status': 'healthy',
                'version': self.version,
                'timestamp': datetime.now().isoformat()
            }
            if self.daemon is not None:
                with self.daemon.lock:
                    body['playlist_length'] = self.daemon.playlist.length()
                body['player_state'] = self.daemon.player.state()
                body['uptime_seconds'] = self.daemon.uptime()
            return jsonify(body), 200

        @self.app.route('/metrics', methods=['GET'])
        def metrics():
            if self.daemon is None:
                return jsonify({'error': 'Daemon not running'}), 503
            return jsonify(self.daemon.metrics.to_dict()), 200

        @self.app.route('/callback', methods=['GET'])
        def oauth_callback():
            """OAuth callback endpoint for Spotify."""
            code = request.args.get('code')
            error = request.args.get('error')

            if error:
                self.logger.error(f"OAuth error: {error}")
                return jsonify({
                    'error': 'OAuth authorization failed',
                    'details': error
                }), 400

            if not code:
                return jsonify({
                    'error': 'Missing authorization code'
                }), 400

            self.logger.info(f"Received OAuth code: {code[:6]}...")

            try:
                tokens = self._exchange_code_for_tokens(code)
            except ConfigError as e:
                self.logger.error(f"Spotify client not configured: {e}")
                return jsonify({'error': 'Spotify client not configured', 'details': str(e)}), 500

            if not tokens:
                return jsonify({
                    'error': 'Failed to exchange code for tokens'
                }), 502

            try:
                self.secret_manager.save_spotify_tokens(tokens['access_token'], tokens['refresh_token'])
            except ConfigError as e:
                self.logger.error(f"Failed to save tokens: {e}")
                return jsonify({'error': 'Failed to save tokens', 'details': str(e)}), 500

            self.logger.info("OAuth tokens saved successfully")
            return jsonify({
                'status': 'success',
                'message': 'OAuth tokens saved successfully',
                'timestamp': datetime.now().isoformat()
            }), 200

        @self.app.route('/auth/spotify', methods=['GET'])
        def spotify_auth():
            """Initiate Spotify OAuth flow."""
            try:
                config = self._spotify_config()
            except ConfigError as e:
                return jsonify({
                    'error': 'Spotify client not configured',
                    'details': str(e)
                }), 500

            query = urlencode({
                'client_id': config['client_id'],
                'response_type': 'code',
                'redirect_uri': config['redirect_uri'],
                'scope': self.secret_manager.get_spotify_scope_string(),
                'show_dialog': 'true',
            })
            return jsonify({
                'auth_url': f"{SPOTIFY_AUTHORIZE_URL}?{query}",
                'redirect_uri': config['redirect_uri']
            }), 200

        @self.app.route('/', methods=['GET'])
        def root():
            return jsonify({
                'service': 'cloudmpd HTTP interface',
                'version': self.version,
                'endpoints': {
                    'health': '/health',
                    'metrics': '/metrics',
                    'spotify_auth': '/auth/spotify',
                    'oauth_callback': '/callback'
                }
            }), 200

    def _exchange_code_for_tokens(self, code: str) -> Optional[Dict[str, Any]]:
        """Exchange authorization code for access and refresh tokens."""
        config = self._spotify_config()
        data = {
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': config['redirect_uri'],
            'client_id': config['client_id'],
            'client_secret': config['client_secret']
        }

        try:
            response = requests.post(SPOTIFY_TOKEN_URL, data=data, timeout=15)
        except requests.RequestException as e:
            self.logger.error(f"Token exchange error: {e}")
            return None

        if response.status_code != 200:
            self.logger.error(f"Token exchange failed: {response.status_code} - {response.text}")
            return None

        tokens = response.json()
        if not tokens.get('access_token'):
            self.logger.error("Token exchange returned no access token")
            return None

        return {
            'access_token': tokens.get('access_token'),
            'refresh_token': tokens.get('refresh_token', ''),
            'expires_in': tokens.get('expires_in'),
            'scope': tokens.get('scope'),
        }

    def run(self) -> None:
        """Run the HTTP server (blocking)."""
        self.logger.info(f"Starting HTTP interface on {self.host}:{self.port}")
        self.app.run(host=self.host, port=self.port, debug=False, use_reloader=False, threaded=True)

    def start_in_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.run, name='http-interface', daemon=True)
        thread.start()
        return thread


def create_app(daemon: Optional[Daemon] = None,
               secret_manager: Optional[SecretManager] = None) -> Flask:
    """Create Flask app for testing."""
    server = HTTPServer(daemon=daemon, secret_manager=secret_manager)
    return server.app
