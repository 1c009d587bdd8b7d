import os
import re
from pathlib import Path
from typing import NamedTuple
from urllib.parse import unquote

# A `%` that does not introduce two hex digits makes the path undecodable.
RE_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


class Rejected(NamedTuple):
	"""A request path that cannot be mapped inside the served root."""

	reason: str


def decodePath(path: str) -> str:
	"""Percent-decodes `path` exactly once. Malformed escapes and sequences
	that are not valid UTF-8 decode to `/`."""
	if RE_BAD_ESCAPE.search(path):
		return "/"
	try:
		return unquote(path, errors="strict")
	except UnicodeDecodeError:
		return "/"


def isWithin(path: Path, root: Path) -> bool:
	"""Tells if `path` is `root` or one of its descendants, comparing path
	components so that `/srv/www-evil` is not within `/srv/www`."""
	parts = root.parts
	return path.parts[: len(parts)] == parts


def resolvePath(root: Path, path: str) -> Path | Rejected:
	"""Maps the raw request `path` to an absolute path under `root`, or
	rejects it.

	The path is decoded once (so `%252e%252e` stays the literal `%2e%2e`),
	NUL characters are dropped, and the result is joined as a relative path
	(`./<path>`) so that an absolute-looking input can't replace the root.
	Normalization of `.` and `..` is purely lexical. Backslashes are left
	as-is: they are only separators where the platform says so."""
	decoded: str = decodePath(path).replace("\x00", "")
	candidate = Path(os.path.normpath(os.path.join(root, f".{decoded}")))
	if not isWithin(candidate, root):
		return Rejected(f"Path escapes the served root: {path!r}")
	return candidate


# EOF
