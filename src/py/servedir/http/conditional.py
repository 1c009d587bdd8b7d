from datetime import datetime, timezone
from email.utils import formatdate, parsedate_to_datetime
from typing import Mapping, NamedTuple

from ..utils.files import FileStat


class Validator(NamedTuple):
	"""The ETag/Last-Modified pair of a file. It is derived from the size
	and modification time only, so it is a weak validator: two versions
	with the same size and mtime are considered equivalent."""

	etag: str
	lastModified: str

	@staticmethod
	def FromStat(stat: FileStat) -> "Validator":
		return Validator(etag(stat), httpdate(stat.mtime))


def etag(stat: FileStat) -> str:
	return f'W/"{stat.size:x}-{stat.mtime:x}"'


def httpdate(millis: int) -> str:
	"""Formats a timestamp in milliseconds as an HTTP date."""
	return formatdate(millis / 1000, usegmt=True)


def parseHTTPDate(value: str) -> int | None:
	"""Parses an HTTP date and returns it in milliseconds since the epoch, or
	`None` when it can't be parsed."""
	try:
		date: datetime = parsedate_to_datetime(value)
		if date.tzinfo is None:
			date = date.replace(tzinfo=timezone.utc)
		return int(date.timestamp() * 1000)
	except (TypeError, ValueError, IndexError, OverflowError):
		return None


def isNotModified(headers: Mapping[str, str | None], stat: FileStat) -> bool:
	"""Tells if a conditional request can be answered with a 304.

	`If-None-Match` matches when it is exactly the current ETag (including the
	`W/` prefix), `If-Modified-Since` matches when it is at or after the
	modification time. Either one is enough."""
	inm: str | None = headers.get("If-None-Match")
	if inm and inm == etag(stat):
		return True
	ims: str | None = headers.get("If-Modified-Since")
	if ims:
		since: int | None = parseHTTPDate(ims)
		if since is not None and since >= stat.mtime:
			return True
	return False


# EOF
