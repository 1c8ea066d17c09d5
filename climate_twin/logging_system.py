# climate_twin/logging_system.py
"""
Structured logging system for the climate twin device.

Provides:
- Colour console output (green status lines, red failures)
- Rotating JSON log files
- Event classification and alarm logging
- In-memory audit trail of accepted control changes

Device-specific features:
- Event severity levels
- Alarm priorities for fan faults and out-of-range readings
- Device/component context on every record
"""

import asyncio
import json
import logging
import logging.handlers
import threading
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

__all__ = [
    "EventSeverity",
    "EventCategory",
    "AlarmPriority",
    "AlarmState",
    "LogEntry",
    "StatusFormatter",
    "JSONFormatter",
    "DeviceLogger",
    "configure_logging",
    "get_logger",
]

_PROCESS_START = time.monotonic()


def uptime() -> float:
    """Seconds since the logging system was imported."""
    return time.monotonic() - _PROCESS_START


# ----------------------------------------------------------------
# Event classification
# ----------------------------------------------------------------


class EventSeverity(Enum):
    """
    Event severity levels.

    Lower number = higher severity
    """

    CRITICAL = 1  # Device cannot continue
    ALERT = 2  # Immediate action required (fan failure)
    ERROR = 3  # Error conditions, degraded operation
    WARNING = 4  # Rejected input, potential issues
    NOTICE = 5  # Normal but significant events
    INFO = 6  # Informational messages
    DEBUG = 7  # Debug/diagnostic information


class EventCategory(Enum):
    """Device event categories."""

    TWIN = "twin"  # Desired/reported state synchronisation
    TELEMETRY = "telemetry"  # Telemetry emission
    ALARM = "alarm"  # Alarm conditions
    AUDIT = "audit"  # Accepted control changes
    SYSTEM = "system"  # Lifecycle events
    COMMUNICATION = "communication"  # Provisioning and transport events


class AlarmPriority(Enum):
    """Alarm priority levels."""

    CRITICAL = 1
    HIGH = 2
    MEDIUM = 3
    LOW = 4


class AlarmState(Enum):
    """Alarm states."""

    ACTIVE = "ACTIVE"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    CLEARED = "CLEARED"


LOGGING_TO_SEVERITY = {
    logging.CRITICAL: EventSeverity.CRITICAL,
    logging.ERROR: EventSeverity.ERROR,
    logging.WARNING: EventSeverity.WARNING,
    logging.INFO: EventSeverity.INFO,
    logging.DEBUG: EventSeverity.DEBUG,
}

SEVERITY_TO_LOGGING = {
    EventSeverity.CRITICAL: logging.CRITICAL,
    EventSeverity.ALERT: logging.CRITICAL,
    EventSeverity.ERROR: logging.ERROR,
    EventSeverity.WARNING: logging.WARNING,
    EventSeverity.NOTICE: logging.INFO,
    EventSeverity.INFO: logging.INFO,
    EventSeverity.DEBUG: logging.DEBUG,
}


# ----------------------------------------------------------------
# Structured log entry
# ----------------------------------------------------------------


@dataclass
class LogEntry:
    """Structured log entry for device events."""

    uptime: float  # Seconds since process start
    wall_time: float  # Wall clock time
    severity: EventSeverity
    category: EventCategory
    message: str

    # Context
    device: str = ""
    component: str = ""

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    # Additional data
    data: dict[str, Any] = field(default_factory=dict)

    # Alarm-specific
    alarm_priority: AlarmPriority | None = None
    alarm_state: AlarmState | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialisation."""
        entry_dict = {
            "uptime": self.uptime,
            "wall_time": self.wall_time,
            "severity": self.severity.name,
            "category": self.category.value,
            "message": self.message,
            "event_id": self.event_id,
        }

        if self.device:
            entry_dict["device"] = self.device
        if self.component:
            entry_dict["component"] = self.component
        if self.data:
            entry_dict["data"] = self.data
        if self.alarm_priority:
            entry_dict["alarm_priority"] = self.alarm_priority.name
        if self.alarm_state:
            entry_dict["alarm_state"] = self.alarm_state.value

        return entry_dict

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict())

    def to_human_readable(self) -> str:
        """Convert to human-readable format."""
        category_str = f"[{self.category.value}]"
        device_str = f"{self.device}: " if self.device else ""
        return f"{category_str} {device_str}{self.message}"


# ----------------------------------------------------------------
# Formatters
# ----------------------------------------------------------------


class StatusFormatter(logging.Formatter):
    """Format console records as colour-coded status lines."""

    RESET = "\033[0m"
    COLOURS = {
        logging.DEBUG: "\033[37m",  # white
        logging.INFO: "\033[32m",  # green
        logging.WARNING: "\033[31m",  # red
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }

    def __init__(self, use_colour: bool = True):
        super().__init__(
            fmt="[%(uptime)8.2fs] [%(levelname)8s] %(name)s: %(message)s"
        )
        self.use_colour = use_colour

    def format(self, record: logging.LogRecord) -> str:
        """Format with uptime prefix and level colour."""
        record.uptime = uptime()
        line = super().format(record)
        if not self.use_colour:
            return line
        colour = self.COLOURS.get(record.levelno, "")
        return f"{colour}{line}{self.RESET}"


class JSONFormatter(logging.Formatter):
    """Format log records as JSON lines."""

    def __init__(self, device: str = ""):
        super().__init__()
        self.device = device

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        severity = LOGGING_TO_SEVERITY.get(record.levelno, EventSeverity.INFO)

        log_entry = LogEntry(
            uptime=uptime(),
            wall_time=record.created,
            severity=severity,
            category=getattr(record, "category", EventCategory.SYSTEM),
            message=record.getMessage(),
            device=self.device,
            component=record.name,
        )

        if record.exc_info:
            log_entry.data["exception"] = self.formatException(record.exc_info)

        return log_entry.to_json()


# ----------------------------------------------------------------
# Device logger
# ----------------------------------------------------------------


# ----------------------------------------------------------------
# Shared JSON file handlers
# ----------------------------------------------------------------

# One rotating handler per log file, so loggers writing to the same
# device file rotate together.
_file_handlers: dict[Path, logging.handlers.RotatingFileHandler] = {}
_file_handlers_lock = threading.Lock()


def _shared_file_handler(
    log_file: Path, device: str
) -> logging.handlers.RotatingFileHandler:
    key = log_file.resolve()
    with _file_handlers_lock:
        handler = _file_handlers.get(key)
        if handler is None:
            # 5MB max, 3 backups
            handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=5 * 1024 * 1024,
                backupCount=3,
            )
            handler.setFormatter(JSONFormatter(device=device))
            _file_handlers[key] = handler
        return handler


def _is_shared_file_handler(handler: logging.Handler) -> bool:
    with _file_handlers_lock:
        return any(handler is shared for shared in _file_handlers.values())


def _close_file_handlers() -> None:
    with _file_handlers_lock:
        handlers = list(_file_handlers.values())
        _file_handlers.clear()
    for handler in handlers:
        handler.close()


class DeviceLogger:
    """
    Logger for the simulated device.

    Wraps Python's logging with:
    - Colour console status lines
    - JSON file logs with rotation
    - Event classification
    - Alarm logging
    - Audit trail of accepted changes
    """

    def __init__(
        self,
        name: str,
        device: str = "",
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
        level: int = logging.DEBUG,
        max_audit_entries: int = 1000,
    ):
        """
        Initialise device logger.

        Args:
            name: Logger name (typically class or module name)
            device: Device name for context
            log_dir: Directory for log files (None = no file logging)
            enable_json: Enable JSON formatted logs (requires log_dir)
            enable_console: Enable console output
            level: Minimum level emitted by this logger
            max_audit_entries: Maximum audit trail entries to retain
        """
        self.name = name
        self.device = device
        self.log_dir = log_dir

        logger_name = f"{name}.{device}" if device else name
        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(level)
        self.logger.propagate = False

        self._remove_handlers()

        if enable_console:
            self._add_console_handler()

        if enable_json and log_dir:
            self._add_json_handler()

        self.audit_trail: list[LogEntry] = []
        self._audit_lock = asyncio.Lock()
        self._max_audit_entries = max_audit_entries

    def _add_console_handler(self) -> None:
        handler = logging.StreamHandler()
        handler.setFormatter(StatusFormatter())
        self.logger.addHandler(handler)

    def _add_json_handler(self) -> None:
        """Add JSON file handler with rotation."""
        if not self.log_dir:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_dir / f"{self.device or 'device'}.json.log"
        self.logger.addHandler(_shared_file_handler(log_file, self.device))

    def _remove_handlers(self) -> None:
        """Detach every handler, closing those not shared with other loggers."""
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            if not _is_shared_file_handler(handler):
                handler.close()

    def close(self) -> None:
        """Detach this logger's handlers."""
        self._remove_handlers()

    # ----------------------------------------------------------------
    # Standard logging methods
    # ----------------------------------------------------------------

    def debug(self, message: str, **kwargs) -> None:
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        self.logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs) -> None:
        self.logger.critical(message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, **kwargs)

    # ----------------------------------------------------------------
    # Structured events
    # ----------------------------------------------------------------

    async def log_event(
        self,
        severity: EventSeverity,
        category: EventCategory,
        message: str,
        **kwargs,
    ) -> LogEntry:
        """
        Log a structured device event.

        Args:
            severity: Event severity level
            category: Event category
            message: Event message
            **kwargs: Additional LogEntry fields (component, data, alarm_*)

        Returns:
            LogEntry that was created
        """
        device = kwargs.pop("device", self.device)

        entry = LogEntry(
            uptime=uptime(),
            wall_time=time.time(),
            severity=severity,
            category=category,
            message=message,
            device=device,
            **kwargs,
        )

        log_level = SEVERITY_TO_LOGGING.get(severity, logging.INFO)
        self.logger.log(
            log_level, entry.to_human_readable(), extra={"category": category}
        )

        if category in (EventCategory.AUDIT, EventCategory.ALARM):
            async with self._audit_lock:
                self.audit_trail.append(entry)
                if len(self.audit_trail) > self._max_audit_entries:
                    self.audit_trail = self.audit_trail[-self._max_audit_entries :]

        return entry

    async def log_audit(
        self, message: str, field_name: str = "", value: Any = None, **kwargs
    ) -> LogEntry:
        """
        Log an accepted control change.

        Args:
            message: Audit message
            field_name: Twin field that changed
            value: New value
            **kwargs: Additional context

        Returns:
            LogEntry that was created
        """
        data = kwargs.pop("data", {})
        data.update({"field": field_name, "value": value})

        return await self.log_event(
            severity=EventSeverity.NOTICE,
            category=EventCategory.AUDIT,
            message=message,
            data=data,
            **kwargs,
        )

    async def log_alarm(
        self,
        message: str,
        priority: AlarmPriority,
        state: AlarmState = AlarmState.ACTIVE,
        **kwargs,
    ) -> LogEntry:
        """
        Log alarm event.

        Args:
            message: Alarm message
            priority: Alarm priority
            state: Alarm state
            **kwargs: Additional context

        Returns:
            LogEntry that was created
        """
        severity_map = {
            AlarmPriority.CRITICAL: EventSeverity.CRITICAL,
            AlarmPriority.HIGH: EventSeverity.ALERT,
            AlarmPriority.MEDIUM: EventSeverity.WARNING,
            AlarmPriority.LOW: EventSeverity.NOTICE,
        }
        severity = severity_map.get(priority, EventSeverity.WARNING)
        if state == AlarmState.CLEARED:
            severity = EventSeverity.NOTICE

        return await self.log_event(
            severity=severity,
            category=EventCategory.ALARM,
            message=message,
            alarm_priority=priority,
            alarm_state=state,
            **kwargs,
        )

    # ----------------------------------------------------------------
    # Audit trail access
    # ----------------------------------------------------------------

    async def get_audit_trail(
        self,
        limit: int = 100,
        category: EventCategory | None = None,
    ) -> list[LogEntry]:
        """
        Get audit trail entries.

        Args:
            limit: Maximum number of entries to return
            category: Filter by category

        Returns:
            List of log entries (most recent last)
        """
        async with self._audit_lock:
            entries = self.audit_trail
            if category:
                entries = [e for e in entries if e.category == category]
            return entries[-limit:]

    async def clear_audit_trail(self) -> int:
        """
        Clear audit trail.

        Returns:
            Number of entries cleared
        """
        async with self._audit_lock:
            count = len(self.audit_trail)
            self.audit_trail.clear()
            return count


# ----------------------------------------------------------------
# Global logger factory
# ----------------------------------------------------------------

_loggers: dict[str, DeviceLogger] = {}
_loggers_lock = threading.Lock()
_default_log_dir: Path | None = None
_default_level: int = logging.DEBUG


def configure_logging(
    log_dir: Path | str | None = None,
    level: int | str = logging.DEBUG,
) -> None:
    """
    Configure global logging settings.

    Loggers created after this call pick up the new defaults.

    Args:
        log_dir: Directory for JSON log files
        level: Minimum level (int or level name such as "INFO")
    """
    global _default_log_dir, _default_level

    if log_dir:
        _default_log_dir = Path(log_dir)
        _default_log_dir.mkdir(parents=True, exist_ok=True)
    else:
        _default_log_dir = None

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"Unknown log level: {level}")
    _default_level = level

    with _loggers_lock:
        for device_logger in _loggers.values():
            device_logger.close()
        _loggers.clear()
    _close_file_handlers()


def get_logger(name: str, device: str = "", **kwargs) -> DeviceLogger:
    """
    Get or create a device logger.

    Thread-safe logger factory.

    Args:
        name: Logger name (typically class name)
        device: Device name for context
        **kwargs: Additional DeviceLogger arguments

    Returns:
        DeviceLogger instance
    """
    logger_key = f"{name}:{device}"

    with _loggers_lock:
        if logger_key not in _loggers:
            if "log_dir" not in kwargs and _default_log_dir:
                kwargs["log_dir"] = _default_log_dir
            kwargs.setdefault("level", _default_level)

            _loggers[logger_key] = DeviceLogger(name, device, **kwargs)

        return _loggers[logger_key]
