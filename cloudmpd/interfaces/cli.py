import argparse
import json
import os
import sys
import logging
import signal
import time
from typing import List, Optional

from cloudmpd.application.content import ContentCache
from cloudmpd.application.daemon import Daemon
from cloudmpd.application.formatting import format_tracks
from cloudmpd.crosscutting.config import (
    APP_VERSION, SUPPORTED_PROVIDERS, ConfigError, DaemonSettings, SecretManager,
    get_secret_manager, load_settings, parse_address, setup_config,
)
from cloudmpd.crosscutting.logging import setup_logging
from cloudmpd.crosscutting.metrics import DaemonMetrics
from cloudmpd.domain.ports import CatalogueClient
from cloudmpd.infrastructure.player.mpv import MpvPlayer
from cloudmpd.infrastructure.providers.spotify import SpotifyCatalogue
from cloudmpd.infrastructure.providers.yandex import YandexCatalogue
from cloudmpd.infrastructure.store.sqlite import SqliteContentStore
from cloudmpd.interfaces.http import HTTPServer
from cloudmpd.interfaces.server import MPDServer

LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']


class CLI:
    """Command Line Interface for cloudmpd."""

    def __init__(self):
        self.parser = self._create_parser()
        self._start_time = None
        self._cleanups = []

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='cloudmpd',
            description='MPD protocol server backed by a streaming music catalogue'
        )
        parser.add_argument('--version', action='version', version=f'%(prog)s {APP_VERSION}')
        parser.add_argument(
            '--config-dir',
            help='Directory holding tokens.json and .env (default: ~/.cloudmpd)'
        )

        subparsers = parser.add_subparsers(dest='command', help='Available commands')

        serve_parser = subparsers.add_parser('serve', help='Run the MPD daemon')
        serve_parser.add_argument(
            '--address',
            help='host:port to listen on (default: :6600)'
        )
        serve_parser.add_argument(
            '--provider',
            choices=list(SUPPORTED_PROVIDERS),
            help='Catalogue provider (default: yandex)'
        )
        serve_parser.add_argument(
            '--cache-dir',
            help='Directory for the content database'
        )
        serve_parser.add_argument(
            '--http-port',
            type=int,
            help='Port for the HTTP health/metrics interface (0 disables it)'
        )
        serve_parser.add_argument(
            '--log-level',
            choices=LOG_LEVELS,
            default='INFO',
            help='Set logging level'
        )
        serve_parser.add_argument(
            '--log-file',
            help='Also write logs to this file'
        )

        search_parser = subparsers.add_parser('search', help='Search the catalogue for tracks')
        search_parser.add_argument('query', nargs='+', help='Search terms')
        search_parser.add_argument(
            '--provider',
            choices=list(SUPPORTED_PROVIDERS),
            help='Catalogue provider (default: yandex)'
        )
        search_parser.add_argument(
            '--limit',
            type=int,
            help='Maximum number of tracks to print'
        )
        search_parser.add_argument(
            '--log-level',
            choices=LOG_LEVELS,
            default='WARNING',
            help='Set logging level'
        )

        config_parser = subparsers.add_parser('config', help='Update and show configuration (no secrets)')
        config_parser.add_argument(
            '--yandex-token',
            help='Store a Yandex Music access token in tokens.json'
        )
        config_parser.add_argument(
            '--set',
            action='append',
            default=[],
            metavar='KEY=VALUE',
            help='Write a variable to the .env file (repeatable)'
        )
        config_parser.add_argument(
            '--log-level',
            choices=LOG_LEVELS,
            default='WARNING',
            help='Set logging level'
        )

        return parser

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            logger = logging.getLogger(__name__)
            logger.warning(f"Received signal {signum}, shutting down gracefully...")
            sys.exit(130)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def _cleanup_resources(self) -> None:
        """Release everything serve() opened, newest first."""
        logger = logging.getLogger(__name__)
        while self._cleanups:
            cleanup = self._cleanups.pop()
            try:
                cleanup()
            except Exception as e:
                logger.warning(f"Cleanup step failed: {e}")
        if self._start_time:
            duration = time.time() - self._start_time
            logger.info(f"CLI execution time: {duration:.2f}s")
            self._start_time = None

    def _settings(self, args: argparse.Namespace, manager: SecretManager) -> DaemonSettings:
        """Configured settings with command-line flags applied on top."""
        settings = load_settings(manager)
        if getattr(args, 'address', None):
            settings.host, settings.port = parse_address(args.address)
        if getattr(args, 'provider', None):
            settings.provider = args.provider
        if getattr(args, 'cache_dir', None):
            settings.cache_dir = args.cache_dir
        if getattr(args, 'http_port', None) is not None:
            settings.http_port = args.http_port
        if getattr(args, 'limit', None):
            settings.search_limit = args.limit
        return settings

    def _get_env_token(self, provider: str, token_type: str = 'access') -> Optional[str]:
        """Get token from environment variables."""
        env_var = f"{provider.upper()}_{token_type.upper()}_TOKEN"
        value = os.getenv(env_var)
        if value is None or not str(value).strip():
            return None
        return value

    def _create_catalogue(self, provider: str, manager: SecretManager) -> CatalogueClient:
        if provider == 'yandex':
            token = self._get_env_token('yandex') or manager.get_yandex_config()['token']
            return YandexCatalogue(token)

        if provider == 'spotify':
            stored = manager.get_spotify_tokens() or {}
            access_token = self._get_env_token('spotify', 'access') or stored.get('access_token')
            refresh_token = self._get_env_token('spotify', 'refresh') or stored.get('refresh_token')
            if not access_token or not refresh_token:
                raise ConfigError("Spotify tokens missing: run the HTTP interface /auth/spotify flow "
                                  "or set SPOTIFY_ACCESS_TOKEN and SPOTIFY_REFRESH_TOKEN")
            try:
                client = manager.get_spotify_client_config()
            except ConfigError:
                # Refresh will be unavailable, the access token still works until it expires
                client = {}
            return SpotifyCatalogue(
                access_token,
                refresh_token,
                client_id=client.get('client_id'),
                client_secret=client.get('client_secret'),
                redirect_uri=client.get('redirect_uri'),
                on_token_refresh=manager.save_spotify_tokens,
            )

        raise ConfigError(f"Unsupported provider: {provider}")

    def _serve(self, args: argparse.Namespace, manager: SecretManager) -> None:
        """Run the daemon until interrupted."""
        logger = logging.getLogger(__name__)
        settings = self._settings(args, manager)
        self._setup_signal_handlers()

        catalogue = self._create_catalogue(settings.provider, manager)

        store = SqliteContentStore(settings.database_path)
        self._cleanups.append(store.close)
        logger.info(f"Content store at {settings.database_path}")

        metrics = DaemonMetrics()
        content = ContentCache(
            catalogue,
            store,
            cache_size=settings.cache_size,
            search_limit=settings.search_limit,
            device_id=settings.device_id,
            metrics=metrics,
        )

        player = MpvPlayer(settings.mpv_path)
        player.start()
        self._cleanups.append(player.close)

        daemon = Daemon(content, player, metrics)

        if settings.http_port:
            HTTPServer(daemon, manager, host=settings.host or 'localhost',
                       port=settings.http_port).start_in_background()

        server = MPDServer((settings.host, settings.port), daemon)
        self._cleanups.append(server.server_close)
        logger.info(f"Listening on {settings.host or '*'}:{server.port} ({settings.provider} catalogue)")
        server.serve_forever()

    def _search(self, args: argparse.Namespace, manager: SecretManager) -> None:
        settings = self._settings(args, manager)
        catalogue = self._create_catalogue(settings.provider, manager)
        tracks = catalogue.search_tracks(' '.join(args.query), settings.search_limit)
        sys.stdout.write(format_tracks(tracks))

    def _show_config(self, args: argparse.Namespace, manager: SecretManager) -> None:
        logger = logging.getLogger(__name__)
        updates = {}
        for item in args.set:
            key, sep, value = item.partition('=')
            if not sep or not key.strip():
                raise ConfigError(f"Expected KEY=VALUE, got: {item}")
            updates[key.strip()] = value
        if updates:
            manager.save_env_vars({**manager.load_env_vars(), **updates})
            logger.info(f"Updated .env keys: {', '.join(sorted(updates))}")
        if args.yandex_token:
            manager.save_yandex_token(args.yandex_token)
            logger.info("Stored Yandex token")

        summary = manager.get_config_summary()
        summary['settings'] = load_settings(manager).to_dict()
        print(json.dumps(summary, indent=2, ensure_ascii=False))

    def run(self, argv: Optional[List[str]] = None) -> None:
        """Run the CLI."""
        self._start_time = time.time()
        args = self.parser.parse_args(argv)

        if not args.command:
            self.parser.print_help()
            sys.exit(1)

        setup_logging(args.log_level, getattr(args, 'log_file', None))
        logger = logging.getLogger(__name__)

        try:
            manager = setup_config(args.config_dir) if args.config_dir else get_secret_manager()
            if args.command == 'serve':
                self._serve(args, manager)
            elif args.command == 'search':
                self._search(args, manager)
            elif args.command == 'config':
                self._show_config(args, manager)
        except KeyboardInterrupt:
            logger.warning("Operation cancelled by user")
            sys.exit(130)
        except ConfigError as e:
            logger.error(f"Configuration error: {e}")
            sys.exit(2)
        except Exception as e:
            logger.error(f"CLI error: {e}")
            sys.exit(1)
        finally:
            self._cleanup_resources()


def main():
    """Main entry point."""
    cli = CLI()
    cli.run()


if __name__ == '__main__':
    main()
