"""
Tests for configuration loading and the daemon host.
"""

import pytest

from conftest import VALID_PAYLOAD, SteppingSocket, wait_for


class TestLoadConfig:
    """Tests for load_config()."""

    def test_defaults_without_file(self):
        from owl_monitor.main import load_config

        config = load_config()
        assert config['listener']['group'] == '224.192.32.19'
        assert config['listener']['port'] == 22600
        assert config['status']['port'] == 8080

    def test_missing_file_uses_defaults(self, tmp_path):
        from owl_monitor.main import default_config, load_config

        assert load_config(str(tmp_path / 'absent.toml')) == default_config()

    def test_file_overrides_defaults(self, tmp_path):
        from owl_monitor.main import load_config

        path = tmp_path / 'config.toml'
        path.write_text(
            '[listener]\n'
            'port = 5000\n'
            'receive_timeout = 15.0\n'
            '\n'
            '[status]\n'
            'port = 0\n'
        )
        config = load_config(str(path))
        assert config['listener']['port'] == 5000
        assert config['listener']['receive_timeout'] == 15.0
        assert config['listener']['group'] == '224.192.32.19'
        assert config['status']['port'] == 0

    def test_bad_toml(self, tmp_path):
        from owl_monitor.engine import ConfigError
        from owl_monitor.main import load_config

        path = tmp_path / 'config.toml'
        path.write_text('[listener\nport = ')
        with pytest.raises(ConfigError):
            load_config(str(path))

    def test_section_must_be_table(self, tmp_path):
        from owl_monitor.engine import ConfigError
        from owl_monitor.main import load_config

        path = tmp_path / 'config.toml'
        path.write_text('listener = 5\n')
        with pytest.raises(ConfigError, match="listener"):
            load_config(str(path))


class TestOwlMonitorDaemon:
    """Tests for the daemon host."""

    def test_invalid_listener_config(self):
        from owl_monitor.engine import ConfigError
        from owl_monitor.main import OwlMonitorDaemon, default_config

        config = default_config()
        config['listener']['group'] = '10.0.0.1'
        with pytest.raises(ConfigError):
            OwlMonitorDaemon(config)

    def test_unknown_listener_key(self):
        from owl_monitor.engine import ConfigError
        from owl_monitor.main import OwlMonitorDaemon, default_config

        config = default_config()
        config['listener']['timeout_minutes'] = 1
        with pytest.raises(ConfigError, match="timeout_minutes"):
            OwlMonitorDaemon(config)

    def test_start_and_stop_without_status_server(self):
        """Test the daemon hosts the listener and leaves it stopped."""
        from owl_monitor.engine import ListenerState
        from owl_monitor.interfaces import LivenessState
        from owl_monitor.main import OwlMonitorDaemon, default_config

        config = default_config()
        config['status']['port'] = 0
        daemon = OwlMonitorDaemon(config)

        sock = SteppingSocket()
        daemon.listener._socket_factory = lambda cfg: sock
        daemon.start()
        try:
            assert daemon.status_server is None
            assert daemon.listener.state is ListenerState.RUNNING
            sock.feed(VALID_PAYLOAD)
            assert wait_for(lambda: daemon.listener.get_liveness() is LivenessState.ONLINE)
        finally:
            daemon.stop()

        assert daemon.listener.state is ListenerState.STOPPED
        assert daemon._shutdown.is_set()


class TestMain:
    """Tests for the command-line entry point."""

    def test_config_error_exit_code(self, monkeypatch):
        from owl_monitor.main import EXIT_CONFIG_ERROR, main

        monkeypatch.setattr('sys.argv', ['owl-monitor', '--port', '0'])
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == EXIT_CONFIG_ERROR

    def test_network_error_exit_code(self, monkeypatch):
        from owl_monitor import main as main_module

        def fail(config):
            raise OSError(99, "Cannot assign requested address")

        original = main_module.MulticastListener
        monkeypatch.setattr(main_module, 'MulticastListener',
                            lambda: original(socket_factory=fail))
        monkeypatch.setattr('sys.argv', ['owl-monitor', '--status-port', '0'])
        monkeypatch.setattr(main_module.signal, 'signal', lambda signum, handler: None)
        with pytest.raises(SystemExit) as exc_info:
            main_module.main()
        assert exc_info.value.code == main_module.EXIT_NETWORK_ERROR
