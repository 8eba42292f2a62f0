#!/usr/bin/env python3
"""
Hive Mining Monitor - CLI
命令行入口

Usage:
    hive-monitor                 # run forever every RUN_INTERVAL seconds
    hive-monitor --once          # one collection cycle, then exit
    hive-monitor --check         # connectivity check (exit 0 / 1)

Environment:
    HIVE_API_TOKEN, HIVE_FARM_ID, MQTT_BROKER (required)
    MQTT_PORT, MQTT_USERNAME, MQTT_PASSWORD, MQTT_CLIENT_ID,
    RUN_INTERVAL, LOG_LEVEL, ENABLE_FILE_LOGGING, LOG_DIR, MAX_LOG_FILES
"""

import argparse
import logging
import os
import signal
import socket
import sys
import time
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Dict

from dotenv import load_dotenv

from . import __version__
from .aggregator import FarmAggregator
from .config import MonitorConfig
from .errors import ConfigError
from .hive_client import HiveApiClient
from .mqtt_session import MqttPublisher
from .scheduler import MonitorScheduler

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_FILENAME = 'mining-monitor.log'

logger = logging.getLogger('HiveMonitor')


def setup_logging(config: MonitorConfig, verbose: bool = False):
    """配置日志: console plus an optional daily-rotated file"""
    level = logging.DEBUG if verbose else getattr(logging, config.log_level, logging.INFO)
    handlers = [logging.StreamHandler(sys.stdout)]

    file_error = None
    if config.enable_file_logging:
        try:
            os.makedirs(config.log_dir, exist_ok=True)
            handlers.append(TimedRotatingFileHandler(
                os.path.join(config.log_dir, LOG_FILENAME),
                when='midnight',
                backupCount=config.max_log_files,
                encoding='utf-8'
            ))
        except OSError as e:
            file_error = e

    logging.basicConfig(level=level, format=LOG_FORMAT, handlers=handlers, force=True)

    if file_error:
        logger.warning(f"⚠ File logging disabled, cannot write to {config.log_dir}: {file_error}")


def print_banner(config: MonitorConfig):
    print("=" * 46)
    print(f"Hive Mining Monitor v{__version__}")
    print(f"Current Time: {datetime.now().isoformat(timespec='seconds')}")
    print("=" * 46)
    print("📋 Configuration Summary:")
    for key, value in config.summary().items():
        print(f"   {key}: {value}")
    print("")


def probe_tcp(host: str, port: int, timeout: float = 2.0) -> Dict[str, Any]:
    """
    Quick TCP reachability probe

    Returns:
        {"result": "OK" | "FAIL", "host", "port", "latency_ms", "error"}
    """
    result = {
        "result": "FAIL",
        "host": host,
        "port": port,
        "latency_ms": 0.0,
        "error": None
    }

    start_time = time.time()
    try:
        with socket.create_connection((host, port), timeout=timeout):
            result["result"] = "OK"
            result["latency_ms"] = (time.time() - start_time) * 1000
    except OSError as e:
        result["error"] = str(e)

    return result


def check_connectivity(config: MonitorConfig, source: HiveApiClient) -> int:
    """Probe the MQTT broker and the HiveOS API. Broker failure is fatal."""
    broker = probe_tcp(config.mqtt_broker, config.mqtt_port, timeout=config.connect_timeout)
    if broker["result"] == "OK":
        print(f"✓ MQTT broker reachable ({broker['latency_ms']:.1f}ms)")
    else:
        print(f"❌ MQTT broker {config.mqtt_broker}:{config.mqtt_port} not reachable: {broker['error']}")

    if source.is_reachable():
        print("✓ HiveOS API reachable")
    else:
        print("⚠ Warning: HiveOS API not reachable")

    return 0 if broker["result"] == "OK" else 1


def main(argv=None) -> int:
    """CLI入口"""
    parser = argparse.ArgumentParser(
        description='Hive Mining Monitor - HiveOS farm telemetry to MQTT',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s
  %(prog)s --once --verbose
  %(prog)s --check
        """
    )
    parser.add_argument('--once', action='store_true',
                        help='Run a single collection cycle and exit')
    parser.add_argument('--check', action='store_true',
                        help='Check broker and API connectivity and exit')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)

    load_dotenv()

    try:
        config = MonitorConfig.from_env()
    except ConfigError as e:
        for problem in e.problems:
            print(f"❌ ERROR: {problem}", file=sys.stderr)
        return 1

    source = HiveApiClient(config.hive_api_token, config.hive_api_url, timeout=config.http_timeout)

    if args.check:
        return check_connectivity(config, source)

    setup_logging(config, args.verbose)
    print_banner(config)

    publisher = MqttPublisher(config)
    aggregator = FarmAggregator(config, source, publisher)
    monitor = MonitorScheduler(config, aggregator, publisher)

    if args.once:
        result = monitor.run_once()
        return 0 if result.ok else 1

    signal.signal(signal.SIGTERM, lambda signum, frame: monitor.stop())

    try:
        monitor.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Received shutdown signal")
        monitor.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
