from pathlib import Path
from typing import Iterable, NamedTuple
from urllib.parse import quote

from ..config import ServeConfig
from ..http.api import PAGE_STYLE
from ..http.conditional import Validator, isNotModified
from ..http.model import HTTPBodyFile, HTTPRequest, HTTPRequestError, HTTPResponse
from ..http.ranges import ByteRange, RangeStatus, parseRange
from ..utils.files import FileEntry, FileProber, FileStat, ProbeError, contentType
from ..utils.htmpl import H, Node, html
from ..utils.logging import debug, exception
from ..utils.paths import Rejected, decodePath, resolvePath

INDEX: str = "index.html"

# -----------------------------------------------------------------------------
#
# RESOLVED TARGETS
#
# -----------------------------------------------------------------------------


class ResolvedFile(NamedTuple):
	path: Path
	size: int
	# Modification time in milliseconds
	mtime: int


class ResolvedDirectory(NamedTuple):
	path: Path


TResolvedTarget = ResolvedFile | ResolvedDirectory | Rejected

# -----------------------------------------------------------------------------
#
# LISTING
#
# -----------------------------------------------------------------------------


def renderListing(entries: Iterable[FileEntry], path: str) -> str:
	"""Renders the HTML listing of a directory. `path` is the raw request
	path, which is used as the base of the links and displayed decoded.
	Entries are shown in the given order, directories with a trailing `/`."""
	# An undecodable path lists the root, so its links start from the root
	if decodePath(path) == "/":
		path = "/"
	base: str = path if path.endswith("/") else f"{path}/"
	title: str = f"Index of {decodePath(base)}"
	items: list[Node] = []
	if base != "/":
		parent = base[:-1].rsplit("/", 1)[0]
		items.append(H.li(H.a("..", href=f"{parent}/")))
	for entry in entries:
		name = f"{entry.name}/" if entry.isDirectory else entry.name
		items.append(H.li(H.a(name, href=f"{base}{quote(name)}")))
	return "".join(
		html(
			H.meta(charset="utf-8"),
			H.meta(name="viewport", content="width=device-width, initial-scale=1"),
			H.style(PAGE_STYLE),
			H.title(title),
			H.h1(title),
			H.ul(*items),
			doctype="html",
		)
	)


# -----------------------------------------------------------------------------
#
# SERVICE
#
# -----------------------------------------------------------------------------


class FileService:
	"""Serves the files of a directory tree, read-only.

	Each request is resolved against the root and turned into a response:
	the file itself (with conditional and range support), the `index.html`
	of a directory, a directory listing, the root `index.html` in SPA mode,
	or an error page."""

	METHODS: tuple[str, ...] = ("GET", "HEAD")

	def __init__(self, config: ServeConfig, prober: FileProber | None = None):
		self.config: ServeConfig = config
		self.prober: FileProber = prober or FileProber()

	@property
	def root(self) -> Path:
		return self.config.root

	async def process(self, request: HTTPRequest) -> HTTPResponse:
		"""Returns the response for the given request. HEAD requests get the
		same status and headers as the GET would, without the body."""
		if request.method not in self.METHODS:
			res = request.notAllowed(self.METHODS)
			res.shouldClose = True
			return res
		try:
			res = await self.respond(request)
		except HTTPRequestError as e:
			res = request.error(e.status or 500, e.message)
		return res.withoutBody() if request.isHead else res

	async def respond(self, request: HTTPRequest) -> HTTPResponse:
		target = await self.resolve(request.path)
		if isinstance(target, Rejected):
			debug("Rejected path", Path=request.path, Reason=target.reason)
			return request.badRequest()
		elif isinstance(target, ResolvedFile):
			return self.respondFile(request, target)
		elif isinstance(target, ResolvedDirectory):
			return await self.respondDirectory(request, target)
		elif self.config.spaMode and (index := await self.fallback()):
			return self.respondFile(request, index)
		else:
			return request.notFound()

	async def resolve(self, path: str) -> TResolvedTarget | None:
		"""Resolves the request path to a file or directory under the root,
		`None` meaning that there is nothing there."""
		local_path = resolvePath(self.root, path)
		if isinstance(local_path, Rejected):
			return local_path
		try:
			stat: FileStat = await self.prober.stat(local_path)
		except ProbeError as e:
			debug("Path not found", Path=path, Reason=str(e))
			return None
		if stat.isDirectory:
			return ResolvedDirectory(local_path)
		else:
			return ResolvedFile(local_path, stat.size, stat.mtime)

	async def index(self, directory: Path) -> ResolvedFile | None:
		"""Returns the `index.html` file of the given directory, if any."""
		path = directory / INDEX
		if not await self.prober.exists(path):
			return None
		try:
			stat: FileStat = await self.prober.stat(path)
		except ProbeError as e:
			raise HTTPRequestError(f"Failed to read {INDEX}", 500) from e
		return None if stat.isDirectory else ResolvedFile(path, stat.size, stat.mtime)

	async def fallback(self) -> ResolvedFile | None:
		"""Returns the root `index.html` that single-page apps use for every
		path they route on the client."""
		try:
			return await self.index(self.root)
		except HTTPRequestError:
			return None

	async def respondDirectory(
		self, request: HTTPRequest, directory: ResolvedDirectory
	) -> HTTPResponse:
		index = await self.index(directory.path)
		if index:
			return self.respondFile(request, index)
		elif not self.config.allowListing:
			return request.notAuthorized("Directory listing denied")
		try:
			entries = await self.prober.listEntries(directory.path)
		except ProbeError as e:
			exception(e, "Failed to read directory")
			return request.fail("Failed to read directory")
		return request.respondHTML(
			renderListing(entries, request.path),
			headers={"Cache-Control": "no-cache"},
		)

	def respondFile(self, request: HTTPRequest, file: ResolvedFile) -> HTTPResponse:
		stat = FileStat(file.size, file.mtime, False)
		validator = Validator.FromStat(stat)
		headers: dict[str, str] = {
			"Content-Type": contentType(file.path),
			"Last-Modified": validator.lastModified,
			"ETag": validator.etag,
			"Accept-Ranges": "bytes",
			"Cache-Control": self.config.cacheControl,
		}
		if isNotModified(request.headers, stat):
			return request.notModified(headers)
		span = parseRange(request.header("Range"), file.size)
		if span is RangeStatus.Unsatisfiable:
			return request.rangeNotSatisfiable(file.size)
		elif isinstance(span, ByteRange):
			headers["Content-Range"] = span.contentRange(file.size)
			return request.respond(
				HTTPBodyFile(file.path, span.start, span.end),
				status=206,
				headers=headers,
			)
		else:
			return request.respond(
				HTTPBodyFile.Whole(file.path, file.size), headers=headers
			)


# EOF
