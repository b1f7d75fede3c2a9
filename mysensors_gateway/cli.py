#!/usr/bin/env python3
"""
Command-Line Interface for the MySensors Gateway

Usage:
    mysensors-gateway                           # Run with default config
    mysensors-gateway -c config.yaml            # Run with custom config
    mysensors-gateway --port /dev/ttyACM0       # Override serial port
    mysensors-gateway --api                     # Run with REST API server
    mysensors-gateway --reboot-all              # Reboot every node and exit
"""

import argparse
import logging
import sys
import threading
import time
from typing import Optional

from .gateway import Gateway
from .models import GatewayConfig, setup_logging
from .storage import NodeStorage
from .transport import SerialTransport


# Seconds between connection checks in the main loop
POLL_INTERVAL = 1.0


class GatewayRunner:
    """Wires the gateway to its serial transport and settings storage."""

    def __init__(self, config: GatewayConfig):
        self.config = config
        self.logger = logging.getLogger("Gateway")
        self.gateway = Gateway(config)
        self.storage: Optional[NodeStorage] = None
        self.transport = SerialTransport(
            config.serial_port,
            baudrate=config.baudrate,
            timeout=config.serial_timeout,
        )
        self.running = False

    def initialize(self) -> bool:
        """Load stored nodes and connect to the serial gateway."""
        if self.config.storage_enabled:
            self.storage = NodeStorage(self.config.db_path)
            self.storage.load_into(self.gateway.registry)
            self.storage.attach(self.gateway.events)

        if not self.config.serial_port:
            self.logger.error("No serial port configured")
            return False

        if not self.transport.open():
            return False

        self.gateway.connect(self.transport)
        return True

    def run(self) -> bool:
        """Run until interrupted or the serial connection is lost."""
        if not self.initialize():
            self.logger.error("Initialization failed")
            return False

        self.running = True
        try:
            self._run_loop()
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

        return True

    def _run_loop(self):
        while self.running:
            if not self.gateway.is_connected():
                self.logger.error("Serial connection lost")
                break
            time.sleep(POLL_INTERVAL)

    def run_with_api(self, api_host: str = None, api_port: int = None) -> bool:
        """Run the gateway with the REST API server (blocking)."""
        from .api import create_api, run_api_server

        host = api_host or self.config.api.host
        port = api_port or self.config.api.port

        if not self.initialize():
            self.logger.error("Initialization failed")
            return False

        app = create_api(self.gateway, self.storage)

        self.running = True
        loop_thread = threading.Thread(target=self._run_loop, daemon=True)
        loop_thread.start()

        self.logger.info(f"API server starting on http://{host}:{port}")
        self.logger.info(f"API docs available at http://{host}:{port}/api/docs")

        try:
            run_api_server(app, host=host, port=port)
        except KeyboardInterrupt:
            self.logger.info("Interrupted by user")
        finally:
            self.shutdown()

        return True

    def reboot_all(self) -> int:
        """Send a reboot to every node id and wait for the broadcast to end."""
        if not self.initialize():
            self.logger.error("Initialization failed")
            return 0

        broadcast = self.gateway.send_reboot_to_all_nodes()
        try:
            broadcast.join()
        except KeyboardInterrupt:
            broadcast.cancel()
            broadcast.join()
        finally:
            self.shutdown()

        return broadcast.sent_count

    def shutdown(self):
        """Disconnect and close the serial port."""
        self.logger.info("Shutting down gateway...")
        self.running = False
        self.gateway.disconnect()
        self.transport.close()
        self.logger.info("Gateway stopped")


def main():
    """Command-line entry point."""
    parser = argparse.ArgumentParser(
        description="MySensors Serial Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mysensors-gateway                              # Run with default config
  mysensors-gateway -c config.yaml               # Run with custom config
  mysensors-gateway --port socket://host:5003    # Ethernet gateway
  mysensors-gateway --api                        # Run with REST API server
  mysensors-gateway --api --api-port 8000        # Custom API port
  mysensors-gateway --reboot-all                 # Reboot every node and exit
        """
    )
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--port",
        default=None,
        help="Serial port or pyserial URL (default: from config)",
    )
    parser.add_argument(
        "--api",
        action="store_true",
        help="Run with REST API server for web access",
    )
    parser.add_argument(
        "--api-host",
        default=None,
        help="API server host (default: from config or 0.0.0.0)",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=None,
        help="API server port (default: from config or 8080)",
    )
    parser.add_argument(
        "--reboot-all",
        action="store_true",
        help="Send a reboot to every node id and exit",
    )

    args = parser.parse_args()

    # Load config
    try:
        config = GatewayConfig.from_yaml(args.config)
    except FileNotFoundError:
        print(f"Error: Config file not found: {args.config}")
        sys.exit(1)
    except Exception as e:
        print(f"Error loading config: {e}")
        sys.exit(1)

    if args.port:
        config.serial_port = args.port

    setup_logging(config)
    runner = GatewayRunner(config)

    # Handle --reboot-all
    if args.reboot_all:
        sent = runner.reboot_all()
        print("\n" + "=" * 50)
        print("REBOOT BROADCAST")
        print("=" * 50)
        print(f"Serial Port:   {config.serial_port}")
        print(f"Nodes Sent:    {sent}")
        print("=" * 50)
        sys.exit(0 if sent else 1)

    # Handle --api or config.api.enabled
    if args.api or config.api.enabled:
        api_host = args.api_host or config.api.host
        api_port = args.api_port or config.api.port

        print("\n" + "=" * 50)
        print("MYSENSORS GATEWAY + REST API")
        print("=" * 50)
        print(f"Serial Port:   {config.serial_port}")
        print(f"API Host:      {api_host}")
        print(f"API Port:      {api_port}")
        print("=" * 50)

        ok = runner.run_with_api(api_host=api_host, api_port=api_port)
        sys.exit(0 if ok else 1)

    # Run main loop (no API)
    if not runner.run():
        sys.exit(1)


if __name__ == "__main__":
    main()
