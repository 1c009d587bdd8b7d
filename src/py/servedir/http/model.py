from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import (
	Literal,
	NamedTuple,
	TypeAlias,
	Union,
)

from .api import ResponseFactory
from .status import HTTP_STATUS

DEFAULT_ENCODING: str = "utf8"

# -----------------------------------------------------------------------------
#
# HELPERS
#
# -----------------------------------------------------------------------------


def headername(name: str, *, headers: dict[str, str] = {}) -> str:
	"""Normalizes the header name as `Kebab-Case`."""
	if name in headers:
		return headers[name]
	key: str = name.lower()
	if key in headers:
		return headers[key]
	else:
		normalized: str = "-".join(_.capitalize() for _ in name.split("-"))
		headers[key] = normalized
		return normalized


# -----------------------------------------------------------------------------
#
# DATA MODEL
#
# -----------------------------------------------------------------------------


class HTTPRequestLine(NamedTuple):
	"""Represents a request status line"""

	method: str
	path: str
	query: str
	protocol: str


class HTTPHeaders(NamedTuple):
	"""Wraps HTTP headers, keeping key information for response/request processing."""

	headers: dict[str, str]
	contentType: str | None = None
	contentLength: int | None = None


class HTTPProcessingStatus(Enum):
	"""Internal parser/processor state management"""

	Processing = 0
	Body = 1
	Timeout = 10
	NoData = 11
	BadFormat = 12


# Type alias for the parser would produce
HTTPAtom: TypeAlias = Union[
	HTTPRequestLine,
	HTTPHeaders,
	HTTPProcessingStatus,
	"HTTPRequest",
]

# -----------------------------------------------------------------------------
#
# ERRORS
#
# -----------------------------------------------------------------------------


class HTTPRequestError(Exception):
	"""To be raised by handlers to generate an error response with the
	given status (500 by default)."""

	def __init__(self, message: str, status: int | None = None):
		super().__init__(message)
		self.message: str = message
		self.status: int | None = status


# -----------------------------------------------------------------------------
#
# BODY
#
# -----------------------------------------------------------------------------


class HTTPBodyBlob(NamedTuple):
	"""Represents a part (or a whole) body as bytes."""

	payload: bytes = b""
	length: int = 0
	# NOTE: We don't know how many is remaining
	remaining: int | None = None

	@staticmethod
	def FromBytes(data: bytes) -> "HTTPBodyBlob":
		return HTTPBodyBlob(payload=data, length=len(data))


class HTTPBodyFile(NamedTuple):
	"""Represents an HTTP body read from a file, between the inclusive
	`start` and `end` offsets. An empty file is `start=0, end=-1`."""

	path: Path
	start: int
	end: int

	@staticmethod
	def Whole(path: Path, size: int) -> "HTTPBodyFile":
		return HTTPBodyFile(path, 0, size - 1)

	@property
	def length(self) -> int:
		return self.end - self.start + 1


# The different types of bodies that are managed
THTTPBody: TypeAlias = HTTPBodyBlob | HTTPBodyFile


class HTTPBodyWriter(ABC):
	"""A generic writer for response bodies. Once `shouldClose` is set, the
	connection must not be reused."""

	__slots__ = ["shouldClose"]

	def __init__(self) -> None:
		self.shouldClose: bool = False

	async def write(self, body: THTTPBody | bytes | None) -> bool:
		"""Writes the given type of body."""
		if isinstance(body, bytes):
			return await self._writeBytes(body)
		elif isinstance(body, HTTPBodyBlob):
			return await self._writeBytes(body.payload)
		elif isinstance(body, HTTPBodyFile):
			return await self._writeFile(body) if body.length > 0 else True
		elif body is None:
			return True
		else:
			raise ValueError(f"Unsupported body format: {body}")

	@abstractmethod
	async def _writeFile(self, body: HTTPBodyFile) -> bool:
		"""Sends the file slice without blocking the loop, setting
		`shouldClose` when it could not be sent whole."""

	@abstractmethod
	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool: ...


# -----------------------------------------------------------------------------
#
# REQUESTS
#
# -----------------------------------------------------------------------------


class HTTPRequest(ResponseFactory["HTTPResponse"]):
	"""Represents an HTTP requests, which also acts as a factory for
	responses."""

	__slots__ = [
		"protocol",
		"method",
		"path",
		"query",
		"_headers",
		"_body",
	]

	def __init__(
		self,
		method: str,
		path: str,
		query: str | None = None,
		headers: HTTPHeaders | dict[str, str] | None = None,
		body: HTTPBodyBlob | None = None,
		protocol: str = "HTTP/1.1",
	):
		super().__init__()
		self.method: str = method
		self.path: str = path
		self.query: str | None = query
		self.protocol: str = protocol
		self._headers: HTTPHeaders = (
			headers
			if isinstance(headers, HTTPHeaders)
			else HTTPHeaders({headername(k): v for k, v in (headers or {}).items()})
		)
		self._body: HTTPBodyBlob | None = body

	@property
	def headers(self) -> dict[str, str]:
		return self._headers.headers

	@property
	def body(self) -> HTTPBodyBlob | None:
		return self._body

	def header(self, name: str) -> str | None:
		return self._headers.headers.get(headername(name))

	@property
	def isHead(self) -> bool:
		return self.method == "HEAD"

	@property
	def shouldClose(self) -> bool:
		"""Tells if the connection should be closed once the response is sent."""
		connection: str = (self.header("Connection") or "").lower()
		return connection == "close" or (
			self.protocol == "HTTP/1.0" and connection != "keep-alive"
		)

	def respond(
		self,
		content: THTTPBody | str | bytes | None = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> "HTTPResponse":
		return HTTPResponse.Create(
			status=status,
			message=message,
			content=content,
			contentType=contentType,
			contentLength=contentLength,
			protocol=self.protocol if self.protocol.startswith("HTTP/") else "HTTP/1.1",
			headers=headers,
		)

	def __str__(self) -> str:
		return f"Request({self.method} {self.path}{f'?{self.query}' if self.query else ''} {self.headers})"


# -----------------------------------------------------------------------------
#
# RESPONSE
#
# -----------------------------------------------------------------------------


class HTTPResponse:
	"""An HTTP response: a status, an ordered set of headers and a body
	source. This is what the file service hands over to the transport."""

	@staticmethod
	def Create(
		content: THTTPBody | str | bytes | None = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		headers: dict[str, str] | None = None,
		status: int = 200,
		message: str | None = None,
		protocol: str = "HTTP/1.1",
	) -> "HTTPResponse":
		"""Factory method to create HTTP response objects. The headers are
		kept in the order they are given, `Content-Type` and `Content-Length`
		are only added when not already there."""
		body: THTTPBody | None = None
		if content is None:
			pass
		elif isinstance(content, str):
			body = HTTPBodyBlob.FromBytes(content.encode(DEFAULT_ENCODING))
		elif isinstance(content, bytes):
			body = HTTPBodyBlob.FromBytes(content)
		elif isinstance(content, HTTPBodyBlob) or isinstance(content, HTTPBodyFile):
			body = content
		else:
			raise ValueError(f"Unsupported content {type(content)}:{content}")
		if contentLength is None and body is not None:
			contentLength = body.length
		res_headers: dict[str, str] = dict(headers) if headers else {}
		if contentType is not None and "Content-Type" not in res_headers:
			res_headers["Content-Type"] = contentType
		if contentLength is not None and "Content-Length" not in res_headers:
			res_headers["Content-Length"] = str(contentLength)
		return HTTPResponse(
			status=status,
			message=message or HTTP_STATUS.get(status, "Unknown status"),
			headers=HTTPHeaders(
				res_headers,
				contentType=res_headers.get("Content-Type"),
				contentLength=contentLength,
			),
			body=body,
			protocol=protocol,
		)

	__slots__ = [
		"protocol",
		"status",
		"message",
		"headers",
		"body",
		"shouldClose",
	]

	def __init__(
		self,
		protocol: str,
		status: int,
		message: str | None,
		headers: HTTPHeaders,
		body: THTTPBody | None = None,
		shouldClose: bool = False,
	):
		super().__init__()
		self.protocol: str = protocol
		self.status: int = status
		self.message: str | None = message
		self.headers: HTTPHeaders = headers
		self.body: THTTPBody | None = body
		self.shouldClose: bool = shouldClose

	def getHeader(self, name: str) -> str | None:
		if name in self.headers.headers:
			return self.headers.headers[name]
		key: str = name.lower()
		for k, v in self.headers.headers.items():
			if k.lower() == key:
				return v
		return None

	def setHeader(self, name: str, value: str | int | None) -> "HTTPResponse":
		if value is None:
			self.headers.headers.pop(name, None)
		else:
			self.headers.headers[name] = str(value)
		return self

	def withoutBody(self) -> "HTTPResponse":
		"""Drops the body while keeping every header, which is what a HEAD
		request gets."""
		self.body = None
		return self

	def head(self) -> bytes:
		"""Serializes the head as a payload."""
		message: str = self.message or HTTP_STATUS.get(self.status, "Unknown status")
		lines: list[str] = [f"{k}: {v}" for k, v in self.headers.headers.items()]
		lines.insert(0, f"{self.protocol} {self.status} {message}")
		lines.append("")
		lines.append("")
		# NOTE: Header values we produce are ASCII, except for the values that
		# are percent-encoded upstream.
		return "\r\n".join(lines).encode("latin-1", errors="replace")

	def __str__(self) -> str:
		return f"Response({self.protocol} {self.status} {self.message} {self.headers} {self.body})"


# EOF
