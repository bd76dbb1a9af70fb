import argparse
import json
import logging
import os
import shutil
import tempfile
from unittest.mock import Mock, patch

import pytest

import cloudmpd.crosscutting.config as config_module
from cloudmpd.crosscutting.config import ConfigError, SecretManager
from cloudmpd.interfaces.cli import CLI
from cloudmpd.tests.fakes import make_track


class TestCLI:
    """Tests for CLI functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.cli = CLI()
        self.temp_dir = tempfile.mkdtemp()
        self.manager = SecretManager(self.temp_dir)
        self.saved_manager = config_module.secret_manager

    def teardown_method(self):
        """Clean up test fixtures."""
        config_module.secret_manager = self.saved_manager
        logging.getLogger('cloudmpd').handlers.clear()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_create_parser(self):
        """Test argument parser creation."""
        parser = self.cli._create_parser()
        assert isinstance(parser, argparse.ArgumentParser)

        args = parser.parse_args(['serve', '--address', '127.0.0.1:6601', '--provider', 'spotify',
                                  '--http-port', '3000'])
        assert args.command == 'serve'
        assert args.address == '127.0.0.1:6601'
        assert args.provider == 'spotify'
        assert args.http_port == 3000
        assert args.log_level == 'INFO'

        args = parser.parse_args(['search', 'comfortably', 'numb', '--limit', '5'])
        assert args.query == ['comfortably', 'numb']
        assert args.limit == 5

        args = parser.parse_args(['--config-dir', '/tmp/x', 'config'])
        assert args.config_dir == '/tmp/x'

    def test_parser_rejects_unknown_provider(self):
        """Test that only supported providers are accepted."""
        with pytest.raises(SystemExit):
            self.cli.parser.parse_args(['serve', '--provider', 'deezer'])

    def test_settings_apply_flags(self):
        """Command-line flags override configured settings."""
        args = self.cli.parser.parse_args(['serve', '--address', ':7000', '--cache-dir', self.temp_dir,
                                           '--http-port', '0'])
        settings = self.cli._settings(args, self.manager)
        assert (settings.host, settings.port) == ('', 7000)
        assert settings.cache_dir == self.temp_dir
        assert settings.http_port == 0
        assert settings.provider == 'yandex'

    @patch.dict(os.environ, {
        'YANDEX_ACCESS_TOKEN': 'test_yandex_token',
        'SPOTIFY_ACCESS_TOKEN': 'test_spotify_access_token',
        'SPOTIFY_REFRESH_TOKEN': 'test_spotify_refresh_token'
    })
    def test_get_env_token(self):
        """Test getting tokens from environment."""
        assert self.cli._get_env_token('yandex') == 'test_yandex_token'
        assert self.cli._get_env_token('spotify') == 'test_spotify_access_token'
        assert self.cli._get_env_token('spotify', 'refresh') == 'test_spotify_refresh_token'
        assert self.cli._get_env_token('nonexistent') is None

    @patch.dict(os.environ, {'YANDEX_ACCESS_TOKEN': '   '})
    def test_blank_env_token_is_ignored(self):
        """Test whitespace-only tokens count as missing."""
        assert self.cli._get_env_token('yandex') is None

    @patch.dict(os.environ, {'YANDEX_ACCESS_TOKEN': 'test_token'})
    @patch('cloudmpd.interfaces.cli.YandexCatalogue')
    def test_create_yandex_catalogue_from_env(self, mock_catalogue_class):
        """Test creating the Yandex catalogue from the environment."""
        catalogue = self.cli._create_catalogue('yandex', self.manager)
        assert catalogue is mock_catalogue_class.return_value
        mock_catalogue_class.assert_called_once_with('test_token')

    @patch('cloudmpd.interfaces.cli.YandexCatalogue')
    def test_create_yandex_catalogue_from_tokens_file(self, mock_catalogue_class):
        """Test Yandex token fallback to tokens.json."""
        self.manager.save_yandex_token('stored_token')
        self.cli._create_catalogue('yandex', self.manager)
        mock_catalogue_class.assert_called_once_with('stored_token')

    def test_create_yandex_catalogue_without_token(self):
        """Test a missing Yandex token is a configuration error."""
        with pytest.raises(ConfigError):
            self.cli._create_catalogue('yandex', self.manager)

    @patch('cloudmpd.interfaces.cli.SpotifyCatalogue')
    def test_create_spotify_catalogue_from_stored_tokens(self, mock_catalogue_class):
        """Test creating the Spotify catalogue with stored tokens and client config."""
        self.manager.save_spotify_tokens('access', 'refresh')
        self.manager.save_env_vars({
            'SPOTIFY_CLIENT_ID': 'cid',
            'SPOTIFY_CLIENT_SECRET': 'secret',
            'SPOTIFY_REDIRECT_URI': 'http://localhost:3000/callback',
        })

        self.cli._create_catalogue('spotify', self.manager)

        args, kwargs = mock_catalogue_class.call_args
        assert args == ('access', 'refresh')
        assert kwargs['client_id'] == 'cid'
        assert kwargs['client_secret'] == 'secret'
        assert kwargs['on_token_refresh'] == self.manager.save_spotify_tokens

    @patch.dict(os.environ, {
        'SPOTIFY_ACCESS_TOKEN': 'env_access',
        'SPOTIFY_REFRESH_TOKEN': 'env_refresh'
    })
    @patch('cloudmpd.interfaces.cli.SpotifyCatalogue')
    def test_create_spotify_catalogue_without_client_config(self, mock_catalogue_class):
        """Tokens alone are enough; refresh is just unavailable."""
        self.cli._create_catalogue('spotify', self.manager)
        args, kwargs = mock_catalogue_class.call_args
        assert args == ('env_access', 'env_refresh')
        assert kwargs['client_id'] is None

    def test_create_spotify_catalogue_without_tokens(self):
        """Test missing Spotify tokens is a configuration error."""
        with pytest.raises(ConfigError, match="Spotify tokens missing"):
            self.cli._create_catalogue('spotify', self.manager)

    def test_create_unknown_catalogue(self):
        """Test unsupported provider."""
        with pytest.raises(ConfigError):
            self.cli._create_catalogue('deezer', self.manager)

    def test_config_command_prints_summary(self, capsys):
        """Test the config command output."""
        self.manager.save_yandex_token('secret_yandex_token')
        self.cli.run(['--config-dir', self.temp_dir, 'config'])

        output = json.loads(capsys.readouterr().out)
        assert output['has_yandex_token'] is True
        assert output['settings']['port'] == 6600
        assert 'secret_yandex_token' not in json.dumps(output)

    def test_config_command_stores_yandex_token(self, capsys):
        """Test --yandex-token writes tokens.json before the summary is shown."""
        self.cli.run(['--config-dir', self.temp_dir, 'config', '--yandex-token', 'fresh_token'])

        assert SecretManager(self.temp_dir).get_yandex_token() == 'fresh_token'
        output = capsys.readouterr().out
        assert json.loads(output)['has_yandex_token'] is True
        assert 'fresh_token' not in output

    def test_config_command_sets_env_vars(self, capsys):
        """Test --set merges into the existing .env file."""
        self.manager.save_env_vars({'SPOTIFY_CLIENT_ID': 'cid', 'CLOUDMPD_ADDRESS': ':6600'})
        self.cli.run(['--config-dir', self.temp_dir, 'config',
                      '--set', 'CLOUDMPD_ADDRESS=:7000', '--set', 'CLOUDMPD_PROVIDER=spotify'])

        assert SecretManager(self.temp_dir).load_env_vars() == {
            'SPOTIFY_CLIENT_ID': 'cid',
            'CLOUDMPD_ADDRESS': ':7000',
            'CLOUDMPD_PROVIDER': 'spotify',
        }
        settings = json.loads(capsys.readouterr().out)['settings']
        assert settings['port'] == 7000
        assert settings['provider'] == 'spotify'

    def test_config_command_rejects_malformed_set(self):
        """Test a --set value without '=' is a configuration error."""
        with pytest.raises(SystemExit) as exc_info:
            self.cli.run(['--config-dir', self.temp_dir, 'config', '--set', 'CLOUDMPD_ADDRESS'])
        assert exc_info.value.code == 2
        assert not self.manager.env_file.exists()

    @patch('cloudmpd.interfaces.cli.YandexCatalogue')
    def test_search_command(self, mock_catalogue_class, capsys):
        """Test the search command prints track blocks."""
        self.manager.save_yandex_token('token')
        catalogue = Mock()
        catalogue.search_tracks.return_value = [make_track("t1", title="Numb", duration_ms=185000)]
        mock_catalogue_class.return_value = catalogue

        self.cli.run(['--config-dir', self.temp_dir, 'search', 'numb', '--limit', '3'])

        catalogue.search_tracks.assert_called_once_with('numb', 3)
        assert "file: t1\nTime: 185\n" in capsys.readouterr().out

    def test_configuration_error_exit_code(self):
        """Test ConfigError maps to exit code 2."""
        with pytest.raises(SystemExit) as exc_info:
            self.cli.run(['--config-dir', self.temp_dir, 'search', 'anything'])
        assert exc_info.value.code == 2

    @patch('cloudmpd.interfaces.cli.YandexCatalogue')
    def test_unexpected_error_exit_code(self, mock_catalogue_class):
        """Test other failures map to exit code 1."""
        self.manager.save_yandex_token('token')
        mock_catalogue_class.return_value.search_tracks.side_effect = RuntimeError("boom")
        with pytest.raises(SystemExit) as exc_info:
            self.cli.run(['--config-dir', self.temp_dir, 'search', 'anything'])
        assert exc_info.value.code == 1

    def test_no_command_prints_help(self, capsys):
        """Test running without a subcommand."""
        with pytest.raises(SystemExit) as exc_info:
            self.cli.run([])
        assert exc_info.value.code == 1
        assert 'usage' in capsys.readouterr().out

    def test_cleanup_runs_newest_first(self):
        """Test cleanup order and that failures do not stop it."""
        order = []
        self.cli._cleanups = [lambda: order.append('store'),
                              Mock(side_effect=RuntimeError("fail")),
                              lambda: order.append('server')]
        self.cli._cleanup_resources()
        assert order == ['server', 'store']
        assert self.cli._cleanups == []
