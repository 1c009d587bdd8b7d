import asyncio
import os
import stat
from pathlib import Path
from typing import NamedTuple

# -----------------------------------------------------------------------------
#
# MIME TYPES
#
# -----------------------------------------------------------------------------

DEFAULT_CONTENT_TYPE: str = "application/octet-stream"

MIME_TYPES: dict[str, str] = dict(
	html="text/html; charset=utf-8",
	htm="text/html; charset=utf-8",
	css="text/css; charset=utf-8",
	js="application/javascript; charset=utf-8",
	mjs="application/javascript; charset=utf-8",
	json="application/json; charset=utf-8",
	txt="text/plain; charset=utf-8",
	md="text/markdown; charset=utf-8",
	xml="application/xml; charset=utf-8",
	svg="image/svg+xml",
	png="image/png",
	jpg="image/jpeg",
	jpeg="image/jpeg",
	gif="image/gif",
	webp="image/webp",
	avif="image/avif",
	ico="image/x-icon",
	pdf="application/pdf",
	mp4="video/mp4",
	webm="video/webm",
	mp3="audio/mpeg",
	wav="audio/wav",
	ogg="audio/ogg",
	wasm="application/wasm",
	map="application/json; charset=utf-8",
	woff="font/woff",
	woff2="font/woff2",
	ttf="font/ttf",
	otf="font/otf",
)


def contentType(path: Path | str) -> str:
	"""Returns the content type for the given path, based on its (lowercased)
	extension only."""
	ext: str = os.path.splitext(str(path))[1][1:].lower()
	return MIME_TYPES.get(ext, DEFAULT_CONTENT_TYPE) if ext else DEFAULT_CONTENT_TYPE


# -----------------------------------------------------------------------------
#
# PROBING
#
# -----------------------------------------------------------------------------


class ProbeError(Exception):
	"""A filesystem call failed."""

	def __init__(self, path: Path | str, message: str):
		super().__init__(f"{message}: {path}")
		self.path: str = str(path)


class NotFound(ProbeError):
	pass


class PermissionDenied(ProbeError):
	pass


class FileStat(NamedTuple):
	size: int
	# Modification time in milliseconds since the epoch
	mtime: int
	isDirectory: bool


class FileEntry(NamedTuple):
	name: str
	isDirectory: bool


def probeError(path: Path | str, error: OSError) -> ProbeError:
	"""Translates an `OSError` into the matching `ProbeError`."""
	if isinstance(error, (FileNotFoundError, NotADirectoryError)):
		return NotFound(path, "No such file or directory")
	elif isinstance(error, PermissionError):
		return PermissionDenied(path, "Permission denied")
	else:
		return ProbeError(path, error.strerror or str(error))


def statPath(path: Path | str) -> FileStat:
	try:
		st = os.stat(path)
	except OSError as e:
		raise probeError(path, e) from e
	except ValueError as e:
		# Embedded NUL and the likes
		raise NotFound(path, str(e)) from e
	return FileStat(
		size=st.st_size,
		mtime=st.st_mtime_ns // 1_000_000,
		isDirectory=stat.S_ISDIR(st.st_mode),
	)


def listPath(path: Path | str) -> list[FileEntry]:
	res: list[FileEntry] = []
	try:
		with os.scandir(path) as entries:
			for entry in entries:
				try:
					is_dir = entry.is_dir()
				except OSError:
					is_dir = False
				res.append(FileEntry(entry.name, is_dir))
	except OSError as e:
		raise probeError(path, e) from e
	return res


class FileProber:
	"""Asynchronous access to filesystem metadata. The blocking calls run in
	the default executor so that a slow disk never stalls the event loop."""

	async def stat(self, path: Path) -> FileStat:
		return await asyncio.to_thread(statPath, path)

	async def exists(self, path: Path) -> bool:
		return await asyncio.to_thread(os.path.exists, path)

	async def listEntries(self, path: Path) -> list[FileEntry]:
		"""Lists the entries of the directory at `path`, in the order the
		filesystem enumerates them."""
		return await asyncio.to_thread(listPath, path)


# EOF
