from enum import Enum
from typing import NamedTuple


class RangeStatus(Enum):
	NotPresent = 0
	Unsatisfiable = 1


class ByteRange(NamedTuple):
	"""An inclusive, 0-indexed span of bytes within a file."""

	start: int
	end: int

	@property
	def length(self) -> int:
		return self.end - self.start + 1

	def contentRange(self, size: int) -> str:
		return f"bytes {self.start}-{self.end}/{size}"


def isNumber(text: str) -> bool:
	return text.isascii() and text.isdigit()


def parseRange(header: str | None, size: int) -> ByteRange | RangeStatus:
	"""Parses a `Range` header against a resource of `size` bytes.

	Only the `bytes` unit is understood; a header in another unit is ignored
	like an absent one. Only the first range of a multi-range header is
	honored. Supports `start-end`, `start-` and the `-suffix` forms, the end
	being clamped to the last byte."""
	if not header or not header.startswith("bytes="):
		return RangeStatus.NotPresent
	spec: str = header[len("bytes=") :].split(",", 1)[0].strip()
	if "-" not in spec:
		return RangeStatus.Unsatisfiable
	first, last = (_.strip() for _ in spec.split("-", 1))
	if not first:
		# Suffix form, `-N` stands for the last N bytes
		if not isNumber(last) or (suffix := int(last)) <= 0:
			return RangeStatus.Unsatisfiable
		start = max(0, size - suffix)
		end = size - 1
	else:
		if not isNumber(first) or (last and not isNumber(last)):
			return RangeStatus.Unsatisfiable
		start = int(first)
		end = int(last) if last else size - 1
		if start > end or start >= size:
			return RangeStatus.Unsatisfiable
		end = min(end, size - 1)
	return ByteRange(start, end) if start <= end else RangeStatus.Unsatisfiable


# EOF
