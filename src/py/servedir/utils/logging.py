import os
import sys
import time
from enum import Enum
from typing import NamedTuple, Any, TypeAlias
from contextvars import ContextVar

ERR = sys.stderr

# SEE: https://no-color.org/
NO_COLOR: bool = "NO_COLOR" in os.environ
FORCE_COLOR: bool = "FORCE_COLOR" in os.environ

TValue: TypeAlias = bool | int | float | str | None

LogOrigin: ContextVar[str] = ContextVar("LogOrigin", default="servedir")


class LogType(Enum):
	Message = 0
	Event = 20


class LogLevel(Enum):
	Debug = 0
	Info = 10
	Warning = 30
	Error = 40  # A managed error
	Exception = 50  # An un-managed error


LOG_LEVEL_COLOR: dict[LogLevel, int] = {
	LogLevel.Debug: 31,
	LogLevel.Info: 75,
	LogLevel.Warning: 202,
	LogLevel.Error: 160,
	LogLevel.Exception: 124,
}

LOG_LEVELS: dict[str, LogLevel] = {
	"debug": LogLevel.Debug,
	"info": LogLevel.Info,
	"warning": LogLevel.Warning,
	"error": LogLevel.Error,
}


class LogEntry(NamedTuple):
	origin: str
	time: float
	type: LogType = LogType.Message
	level: LogLevel = LogLevel.Info
	message: str | None = None
	name: str | None = None
	value: TValue = None
	context: dict[str, TValue] | None = None
	icon: str | None = None


class Term:
	BOLD: str = "" if NO_COLOR else "\033[1m"
	RESET: str = "" if NO_COLOR else "\033[0m"

	@staticmethod
	def Color(color: int) -> str:
		return f"\033[0;38;5;{color}m" if (FORCE_COLOR or not NO_COLOR) else ""


class LogConfig:
	"""Process-wide logging threshold, set once at startup."""

	level: LogLevel = LOG_LEVELS.get(
		os.environ.get("SERVEDIR_LOG_LEVEL", "info").lower(), LogLevel.Info
	)


def setLevel(level: LogLevel | str) -> LogLevel:
	LogConfig.level = (
		level if isinstance(level, LogLevel) else LOG_LEVELS[level.lower()]
	)
	return LogConfig.level


def formatData(value: Any) -> str:
	if value is None or value == () or value == [] or value == {}:
		return "◌"
	elif isinstance(value, dict):
		return " ".join(
			f"{Term.BOLD}{k}{Term.RESET}={formatData(v)}" for k, v in value.items()
		)
	elif isinstance(value, list) or isinstance(value, tuple):
		return ",".join(formatData(v) for v in value)
	elif isinstance(value, str):
		return repr(value) if " " in value else value
	elif isinstance(value, bool):
		return "✓" if value else "✗"
	elif isinstance(value, float):
		return f"{value:0.2f}"
	else:
		return str(value)


def send(entry: LogEntry) -> LogEntry:
	if entry.level.value < LogConfig.level.value:
		return entry
	icon: str = f" {entry.icon}" if entry.icon else ""
	clr: str = Term.Color(LOG_LEVEL_COLOR[entry.level])
	if entry.type == LogType.Event:
		ERR.write(
			f"{clr}{Term.BOLD}[{entry.origin}] {entry.name}{Term.RESET} {formatData(entry.value)} {formatData(entry.context)}{Term.RESET}\n"
		)
	else:
		ERR.write(
			f"{clr}{Term.BOLD}[{entry.origin}]{Term.RESET}{icon} {entry.message} {formatData(entry.context)}{Term.RESET}\n"
		)
	ERR.flush()
	return entry


def entry(
	*,
	type: LogType = LogType.Message,
	level: LogLevel = LogLevel.Info,
	message: str | None = None,
	name: str | None = None,
	value: TValue = None,
	context: dict[str, TValue],
	icon: str | None = None,
) -> LogEntry:
	return LogEntry(
		origin=LogOrigin.get(),
		time=time.time(),
		type=type,
		level=level,
		message=message,
		name=name,
		value=value,
		context=context,
		icon=icon,
	)


def debug(message: str, *, icon: str | None = None, **context: TValue) -> LogEntry:
	return send(
		entry(message=message, level=LogLevel.Debug, context=context, icon=icon)
	)


def info(message: str, *, icon: str | None = None, **context: TValue) -> LogEntry:
	return send(entry(message=message, context=context, icon=icon))


def warning(message: str, *, icon: str | None = None, **context: TValue) -> LogEntry:
	return send(
		entry(message=message, level=LogLevel.Warning, context=context, icon=icon)
	)


def error(
	message: str,
	code: int | str | None,
	*,
	icon: str | None = None,
	**context: TValue,
) -> LogEntry:
	return send(
		entry(
			message=message,
			value=code,
			level=LogLevel.Error,
			context=context,
			icon=icon,
		)
	)


def event(event: str, value: Any = None, **context: TValue) -> LogEntry:
	return send(entry(name=event, value=value, type=LogType.Event, context=context))


def exception(
	exception: BaseException,
	message: str | None = None,
) -> BaseException:
	try:
		stream = ERR
		stream.write(
			f"!!! EXCP {f'{message}: [{exception.__class__.__name__}] {exception}' if message else f'[{exception.__class__.__name__}] {exception}'}\n"
		)
		tb = exception.__traceback__
		while tb:
			code = tb.tb_frame.f_code
			stream.write(
				f"... in {code.co_name:15s} at {tb.tb_lineno:4d} in {code.co_filename}\n",
			)
			tb = tb.tb_next
		stream.flush()
	except Exception:  # nosec: B110
		# Swallow all exceptions so that this function can be called from an exception
		# handler safely.
		pass
	# Return the exception so that this function can be called like:
	#   raise exception(e)
	return exception


def logged(level: LogLevel) -> bool:
	"""Tells if entries of the given level are currently emitted. This is used
	to guard against building expensive log entries when not necessary."""
	return level.value >= LogConfig.level.value


# EOF
