"""
CLI Tests
命令行测试
"""

import logging
import socket
from unittest.mock import patch

import pytest

from hive_monitor import main as cli
from hive_monitor.config import MonitorConfig
from hive_monitor.models import CycleResult

ENV = {
    "HIVE_API_TOKEN": "token",
    "HIVE_FARM_ID": "5",
    "MQTT_BROKER": "127.0.0.1",
    "ENABLE_FILE_LOGGING": "false",
}


@pytest.fixture
def env(monkeypatch):
    for key in ("MQTT_PORT", "RUN_INTERVAL", "LOG_LEVEL", "MQTT_USERNAME", "MQTT_PASSWORD"):
        monkeypatch.delenv(key, raising=False)
    for key, value in ENV.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)


class TestMain:

    def test_missing_config_exits_1(self, monkeypatch, capsys):
        for key in ENV:
            monkeypatch.delenv(key, raising=False)
        monkeypatch.setattr(cli, "load_dotenv", lambda: None)

        assert cli.main([]) == 1
        assert "HIVE_API_TOKEN" in capsys.readouterr().err

    def test_once_runs_single_cycle(self, env):
        with patch.object(cli, "MonitorScheduler") as scheduler_cls:
            scheduler_cls.return_value.run_once.return_value = CycleResult(ok=True)

            assert cli.main(["--once"]) == 0

            scheduler_cls.return_value.run_once.assert_called_once()
            scheduler_cls.return_value.start.assert_not_called()

    def test_once_failed_cycle_exits_1(self, env):
        with patch.object(cli, "MonitorScheduler") as scheduler_cls:
            scheduler_cls.return_value.run_once.return_value = CycleResult(ok=False, error="x")
            assert cli.main(["--once"]) == 1

    def test_keyboard_interrupt_stops_scheduler(self, env):
        with patch.object(cli, "MonitorScheduler") as scheduler_cls, \
                patch.object(cli.signal, "signal"):
            scheduler_cls.return_value.start.side_effect = KeyboardInterrupt()

            assert cli.main([]) == 0
            scheduler_cls.return_value.stop.assert_called_once()

    def test_check_reports_broker_state(self, env):
        with patch.object(cli, "probe_tcp", return_value={"result": "FAIL", "error": "refused"}), \
                patch.object(cli.HiveApiClient, "is_reachable", return_value=True):
            assert cli.main(["--check"]) == 1

        with patch.object(cli, "probe_tcp", return_value={"result": "OK", "latency_ms": 1.0}), \
                patch.object(cli.HiveApiClient, "is_reachable", return_value=False):
            assert cli.main(["--check"]) == 0


class TestProbeTcp:

    def test_open_port(self):
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.bind(('127.0.0.1', 0))
        server.listen(1)
        try:
            result = cli.probe_tcp('127.0.0.1', server.getsockname()[1], timeout=1)
        finally:
            server.close()

        assert result["result"] == "OK"
        assert result["error"] is None

    def test_closed_port(self):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(('127.0.0.1', 0))
        port = sock.getsockname()[1]
        sock.close()

        result = cli.probe_tcp('127.0.0.1', port, timeout=1)

        assert result["result"] == "FAIL"
        assert result["error"]


class TestSetupLogging:

    def test_file_logging_writes_to_log_dir(self, tmp_path):
        config = MonitorConfig(hive_api_token="t", farm_id="1", mqtt_broker="h",
                               log_dir=str(tmp_path / "logs"), max_log_files=3)
        cli.setup_logging(config)
        try:
            handlers = logging.getLogger().handlers
            rotating = [h for h in handlers if isinstance(h, cli.TimedRotatingFileHandler)]
            assert len(rotating) == 1
            assert rotating[0].backupCount == 3
            assert (tmp_path / "logs" / cli.LOG_FILENAME).exists()
        finally:
            for handler in logging.getLogger().handlers[:]:
                handler.close()
                logging.getLogger().removeHandler(handler)
