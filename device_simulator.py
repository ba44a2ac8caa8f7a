#!/usr/bin/env python3
"""
Simulated relay controller for bench testing the server without hardware.

Each poll cycle does what the firmware does:
  1. POST /status with the current reading and relay states
  2. GET /config and keep whatever configuration is saved
  3. GET /command and apply ON/OFF to the named relay

Usage:
    python device_simulator.py --device floor1 --relays 4 --interval 5
"""

import argparse
import logging
import random
import sys
import time

import requests

logger = logging.getLogger("device_simulator")

DEFAULT_SERVER_URL = "http://localhost:3000"


class SimulatedDevice:
    def __init__(self, device_id, server_url=DEFAULT_SERVER_URL, relay_count=4,
                 session=None, timeout=5):
        self.device_id = device_id
        self.server_url = server_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.relays = {f"relay{i}": False for i in range(1, relay_count + 1)}
        self.config = {}
        self.applied_commands = []

    def read_current(self):
        # 0.8A per closed relay plus a little noise
        on = sum(1 for state in self.relays.values() if state)
        return round(on * 0.8 + random.uniform(0.0, 0.05), 3)

    def report_status(self):
        payload = {"deviceId": self.device_id, "current": self.read_current()}
        payload.update(self.relays)
        r = self.session.post(f"{self.server_url}/status", json=payload, timeout=self.timeout)
        r.raise_for_status()
        return r.json()

    def fetch_config(self):
        r = self.session.get(f"{self.server_url}/config",
                             params={"deviceId": self.device_id}, timeout=self.timeout)
        r.raise_for_status()
        config = r.json()
        if config and config != self.config:
            logger.info("[CONFIG] %s: new configuration %s", self.device_id, config)
            self.config = config
        return config

    def fetch_command(self):
        r = self.session.get(f"{self.server_url}/command",
                             params={"deviceId": self.device_id}, timeout=self.timeout)
        r.raise_for_status()
        command = r.json()
        if command:
            self.apply(command)
        return command

    def apply(self, command):
        relay = str(command.get("relay"))
        action = str(command.get("command", "")).upper()
        if relay not in self.relays:
            logger.warning("[COMMAND] %s: unknown relay %s, ignored", self.device_id, relay)
            return False
        if action not in ("ON", "OFF"):
            logger.warning("[COMMAND] %s: unsupported command %s, ignored", self.device_id, action)
            return False
        self.relays[relay] = action == "ON"
        self.applied_commands.append(command)
        logger.info("[COMMAND] %s: %s -> %s", self.device_id, relay, action)
        return True

    def poll_once(self):
        self.report_status()
        self.fetch_config()
        return self.fetch_command()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Simulated relay controller")
    parser.add_argument("--server", "-s", default=DEFAULT_SERVER_URL)
    parser.add_argument("--device", "-d", default="floor1")
    parser.add_argument("--relays", "-r", type=int, default=4)
    parser.add_argument("--interval", "-i", type=float, default=5.0,
                        help="Seconds between poll cycles")
    parser.add_argument("--cycles", "-n", type=int, default=0,
                        help="Number of cycles (0 = run until Ctrl+C)")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    device = SimulatedDevice(args.device, args.server, args.relays)
    logger.info("Polling %s as %s every %.1fs", args.server, args.device, args.interval)

    cycle = 0
    try:
        while args.cycles == 0 or cycle < args.cycles:
            cycle += 1
            try:
                device.poll_once()
            except requests.exceptions.RequestException as e:
                logger.error("poll failed: %s", e)
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Stopped after %d cycles", cycle)
    return 0


if __name__ == "__main__":
    sys.exit(main())
