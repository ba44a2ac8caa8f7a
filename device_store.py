"""
In-memory device state for the power control server.

Three stores, all volatile and created empty at process start:

- DeviceRegistry: latest status report per device
- CommandMediator: at most one pending command per device, removed when the
  device picks it up
- ConfigStore: last saved configuration blob per device

Every read/write for a device id runs under that id's own lock, so devices
never wait on each other.
"""

import copy
import logging
import threading
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


# -------- Errors --------

class StoreError(Exception):
    """Base class for client-facing store errors."""

    status_code = 400


class InvalidPayload(StoreError):
    pass


class InvalidCommand(StoreError):
    pass


class InvalidConfig(StoreError):
    pass


class NotFound(StoreError):
    status_code = 404


# -------- Validation helpers --------

def normalize_device_id(value: Any) -> Optional[str]:
    """Return the device id as a non-empty string, or None if unusable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value:
        return value
    return None


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


# -------- Per-key locking --------

class KeyedLocks:
    """Lazily created lock per key.

    The guard lock is only held while looking up or creating a key's lock.
    Locks are only created on write paths and never removed, so the table
    holds exactly the keys that have been written at least once.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}

    def for_key(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def existing(self, key: str) -> Optional[threading.Lock]:
        """Return the key's lock, or None if the key was never written."""
        with self._guard:
            return self._locks.get(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# -------- Device Registry --------

@dataclass(frozen=True)
class StatusRecord:
    device_id: str
    current: float
    relay_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> Dict[str, Any]:
        # Flat wire shape; the server timestamp wins over a reported one.
        body = {"current": self.current}
        body.update(copy.deepcopy(self.relay_data))
        body["timestamp"] = self.timestamp
        return body


def _detached(record: StatusRecord) -> StatusRecord:
    return replace(record, relay_data=copy.deepcopy(record.relay_data))


class DeviceRegistry:
    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self._locks = KeyedLocks()
        self._records: Dict[str, StatusRecord] = {}

    def report_status(self, device_id: Any, current: Any,
                      relay_data: Optional[Dict[str, Any]] = None) -> StatusRecord:
        """Replace the status record for a device with a fresh one."""
        key = normalize_device_id(device_id)
        if key is None:
            raise InvalidPayload("Invalid payload: deviceId required")
        if not is_number(current):
            raise InvalidPayload("Invalid payload: current must be a number")

        extra = dict(relay_data or {})
        extra.pop("current", None)
        extra.pop("deviceId", None)

        with self._locks.for_key(key):
            record = StatusRecord(
                device_id=key,
                current=current,
                relay_data=copy.deepcopy(extra),
                timestamp=self._clock(),
            )
            self._records[key] = record
        logger.debug("status stored for %s (%d extra fields)", key, len(extra))
        return _detached(record)

    def get_status(self, device_id: Any) -> StatusRecord:
        key = normalize_device_id(device_id)
        if key is None:
            raise NotFound("Device not found")
        lock = self._locks.existing(key)
        if lock is None:
            raise NotFound("Device not found")
        with lock:
            record = self._records.get(key)
        if record is None:
            raise NotFound("Device not found")
        return _detached(record)

    def __len__(self) -> int:
        return len(self._records)


# -------- Command Mediator --------

@dataclass(frozen=True)
class Command:
    command: str
    relay: Any
    schedule_time: Any = None

    def to_dict(self) -> Dict[str, Any]:
        body = {"command": self.command, "relay": self.relay}
        if self.schedule_time is not None:
            body["scheduleTime"] = self.schedule_time
        return body


def _valid_relay(relay: Any) -> bool:
    if isinstance(relay, bool):
        return False
    if isinstance(relay, int):
        return True
    return isinstance(relay, str) and relay != ""


class CommandMediator:
    """Single-slot command queue per device.

    A device is either Empty (no entry) or Pending (one entry). enqueue()
    moves it to Pending, discarding whatever was waiting; dequeue() takes the
    entry and moves it back to Empty. Both run under the device's lock so a
    pending command is handed out at most once.
    """

    def __init__(self):
        self._locks = KeyedLocks()
        self._pending: Dict[str, Command] = {}

    def enqueue(self, device_id: Any, command: Any, relay: Any,
                schedule_time: Any = None) -> Command:
        key = normalize_device_id(device_id)
        if key is None:
            raise InvalidCommand("Missing fields: deviceId required")
        if not isinstance(command, str) or not command:
            raise InvalidCommand("Missing fields: command required")
        if not _valid_relay(relay):
            raise InvalidCommand("Missing fields: relay required")

        new = Command(command=command, relay=relay, schedule_time=schedule_time)
        with self._locks.for_key(key):
            previous = self._pending.get(key)
            self._pending[key] = new
        if previous is not None:
            logger.info("[COMMAND] %s: pending %s/%s superseded by %s/%s",
                        key, previous.relay, previous.command, relay, command)
        return new

    def dequeue(self, device_id: Any) -> Optional[Command]:
        """Take the pending command for a device, or None when there is none."""
        key = normalize_device_id(device_id)
        if key is None:
            return None
        lock = self._locks.existing(key)
        if lock is None:
            return None
        with lock:
            return self._pending.pop(key, None)

    def __len__(self) -> int:
        return len(self._pending)


# -------- Configuration Store --------

class ConfigStore:
    def __init__(self):
        self._locks = KeyedLocks()
        self._configs: Dict[str, Dict[str, Any]] = {}

    def save_config(self, device_id: Any, config: Any) -> Dict[str, Any]:
        key = normalize_device_id(device_id)
        if key is None:
            raise InvalidConfig("Invalid config: deviceId required")
        if not isinstance(config, dict):
            raise InvalidConfig("Invalid config: config must be an object")

        blob = copy.deepcopy(config)
        with self._locks.for_key(key):
            self._configs[key] = blob
        return copy.deepcopy(blob)

    def get_config(self, device_id: Any) -> Optional[Dict[str, Any]]:
        key = normalize_device_id(device_id)
        if key is None:
            return None
        lock = self._locks.existing(key)
        if lock is None:
            return None
        with lock:
            blob = self._configs.get(key)
        return copy.deepcopy(blob) if blob is not None else None

    def __len__(self) -> int:
        return len(self._configs)


@dataclass
class DeviceStores:
    """The process-wide stores, built once and shared by every request."""

    registry: DeviceRegistry = field(default_factory=DeviceRegistry)
    commands: CommandMediator = field(default_factory=CommandMediator)
    configs: ConfigStore = field(default_factory=ConfigStore)
