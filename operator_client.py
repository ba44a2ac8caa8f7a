#!/usr/bin/env python3
"""
Operator command-line client for the Power Control Server.

Logs in with the operator credentials, then reads device status, queues
relay commands, or reads/saves device configuration.

Examples:
  python operator_client.py -u admin -p secret status floor1
  python operator_client.py -u admin -p secret command floor1 relay1 OFF
  python operator_client.py -u admin -p secret config-set floor1 '{"relay1": {"maxCurrent": 10}}'
  python operator_client.py config-get floor1
"""

import argparse
import json
import os
import sys

import requests
from colorama import Fore, Style, init

DEFAULT_SERVER_URL = os.getenv("POWER_SERVER_URL", "http://localhost:3000")


class OperatorClientError(Exception):
    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.status_code = status_code


class OperatorClient:
    """Thin wrapper around the server's operator API."""

    def __init__(self, server_url=DEFAULT_SERVER_URL, timeout=10, session=None):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.token = None

    def _request(self, method, path, **kwargs):
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        response = self.session.request(method, f"{self.server_url}{path}",
                                        headers=headers, timeout=self.timeout, **kwargs)
        try:
            body = response.json()
        except ValueError:
            body = {}
        if response.status_code >= 400:
            error = body.get("error") if isinstance(body, dict) else None
            raise OperatorClientError(error or f"HTTP {response.status_code}", response.status_code)
        return body

    def login(self, username, password):
        body = self._request("POST", "/login", json={"username": username, "password": password})
        self.token = body["token"]
        return self.token

    def get_status(self, device_id):
        return self._request("GET", f"/status/{device_id}")

    def send_command(self, device_id, relay, command, schedule_time=None):
        payload = {"deviceId": device_id, "command": command, "relay": relay}
        if schedule_time is not None:
            payload["scheduleTime"] = schedule_time
        return self._request("POST", "/command", json=payload)

    def get_config(self, device_id):
        return self._request("GET", "/config", params={"deviceId": device_id})

    def save_config(self, device_id, config):
        return self._request("POST", "/config", json={"deviceId": device_id, "config": config})


def _print_json(data):
    print(json.dumps(data, indent=2, sort_keys=True))


def build_parser():
    parser = argparse.ArgumentParser(
        description="Operate relay controllers through the Power Control Server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__.split("Examples:", 1)[1] if "Examples:" in __doc__ else None,
    )
    parser.add_argument("--server", "-s", default=DEFAULT_SERVER_URL,
                        help=f"Server URL (default: {DEFAULT_SERVER_URL})")
    parser.add_argument("--username", "-u", default=os.getenv("LOGIN_ID"),
                        help="Operator login (default: $LOGIN_ID)")
    parser.add_argument("--password", "-p", default=os.getenv("LOGIN_PW"),
                        help="Operator password (default: $LOGIN_PW)")

    sub = parser.add_subparsers(dest="action", required=True)

    p = sub.add_parser("status", help="Show the latest status of a device")
    p.add_argument("device")

    p = sub.add_parser("command", help="Queue a relay command")
    p.add_argument("device")
    p.add_argument("relay")
    p.add_argument("command", help="e.g. ON or OFF")
    p.add_argument("--schedule-time", help="Optional scheduleTime passed to the device")

    p = sub.add_parser("config-get", help="Show the saved configuration of a device")
    p.add_argument("device")

    p = sub.add_parser("config-set", help="Save a configuration object for a device")
    p.add_argument("device")
    p.add_argument("config", help="JSON object")

    return parser


def run(args, client=None):
    client = client or OperatorClient(args.server)

    if args.action != "config-get":
        if not args.username or not args.password:
            print(f"{Fore.RED}✗ --username and --password (or LOGIN_ID/LOGIN_PW) required{Style.RESET_ALL}")
            return 1
        client.login(args.username, args.password)

    if args.action == "status":
        _print_json(client.get_status(args.device))
    elif args.action == "command":
        result = client.send_command(args.device, args.relay, args.command, args.schedule_time)
        print(f"{Fore.GREEN}✓ {args.command} for {args.relay} {result.get('result')} on {args.device}{Style.RESET_ALL}")
        print("  The device will pick it up on its next poll.")
    elif args.action == "config-get":
        _print_json(client.get_config(args.device))
    elif args.action == "config-set":
        try:
            config = json.loads(args.config)
        except ValueError as e:
            print(f"{Fore.RED}✗ config is not valid JSON: {e}{Style.RESET_ALL}")
            return 1
        result = client.save_config(args.device, config)
        print(f"{Fore.GREEN}✓ Configuration {result.get('result')} for {args.device}{Style.RESET_ALL}")
    return 0


def main(argv=None):
    init()
    args = build_parser().parse_args(argv)
    try:
        return run(args)
    except OperatorClientError as e:
        print(f"{Fore.RED}✗ Server rejected request ({e.status_code}): {e}{Style.RESET_ALL}")
        return 1
    except requests.exceptions.RequestException as e:
        print(f"{Fore.RED}✗ Error: {e}{Style.RESET_ALL}")
        print(f"Make sure the server is running at {args.server}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
