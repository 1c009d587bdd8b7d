from typing import Iterator, ClassVar
from .model import (
	HTTPRequest,
	HTTPRequestLine,
	HTTPHeaders,
	HTTPBodyBlob,
	HTTPAtom,
	HTTPProcessingStatus,
	headername,
)

EOL: bytes = b"\r\n"

# Request lines and header lines longer than this are rejected
MAX_LINE: int = 16_384


class HTTPParseError(ValueError):
	"""The peer sent something that is not an HTTP/1.x request."""


class LineParser:
	__slots__ = ["buffer", "line", "offset"]

	def __init__(self) -> None:
		self.buffer: bytearray = bytearray()
		self.line: bytes | None = None
		self.offset: int = 0

	def reset(self) -> "LineParser":
		self.buffer.clear()
		self.line = None
		self.offset = 0
		return self

	def flush(self) -> bytes | None:
		return self.line

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bytes | None, int]:
		"""Returns the matching line and how many bytes were read in chunk from
		start. When line is None, then the whole chunk has been processed."""
		pos = len(self.buffer)
		self.buffer += chunk[start:]
		end = self.buffer.find(EOL, self.offset)
		if end == -1:
			if len(self.buffer) > MAX_LINE:
				raise HTTPParseError(f"Line exceeds {MAX_LINE} bytes")
			self.offset = max(0, len(self.buffer) - len(EOL) + 1)
			return None, len(chunk) - start
		else:
			self.line = bytes(self.buffer[:end])
			self.buffer.clear()
			self.offset = 0
			return self.line, (end - pos) + len(EOL)


class MessageParser:
	"""Parses an HTTP request line."""

	__slots__ = ["line", "value", "skipping"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.value: HTTPRequestLine | None = None
		self.skipping: int = 0

	def flush(self) -> HTTPRequestLine | None:
		res = self.value
		self.reset()
		return res

	def reset(self) -> "MessageParser":
		self.line.reset()
		self.value = None
		self.skipping = 0
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		n = len(chunk)
		available = n - start
		if self.skipping:
			# We have remaining data to read/skip, so we do that
			read = min(available, self.skipping)
			self.skipping -= read
			return None, read
		elif available >= 5 and chunk[start] == 0x16 and not self.line.buffer:
			# This is a TLS Handshake (someone tried https://), we skip the
			# record, we don't do TLS.
			size = 5 + (chunk[start + 3] << 8) + chunk[start + 4]
			if available >= size:
				return None, size
			else:
				self.skipping = size - available
				return None, available
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			# Empty lines before a request line are tolerated
			return None, read
		try:
			ln = line.decode("ascii")
		except UnicodeDecodeError as e:
			raise HTTPParseError("Request line is not ASCII") from e
		parts = ln.split(" ")
		if len(parts) != 3 or not parts[0] or not parts[2].startswith("HTTP/"):
			raise HTTPParseError(f"Malformed request line: {ln!r}")
		method, target, protocol = parts
		p: list[str] = target.split("?", 1)
		self.value = HTTPRequestLine(
			method, p[0], p[1] if len(p) > 1 else "", protocol
		)
		return True, read

	def __str__(self) -> str:
		return f"MessageParser({self.value})"


class HeadersParser:
	__slots__ = ["headers", "contentType", "contentLength", "line"]

	def __init__(self) -> None:
		self.line: LineParser = LineParser()
		self.headers: dict[str, str] = {}
		self.contentType: str | None = None
		self.contentLength: int | None = None

	def flush(self) -> HTTPHeaders:
		res = HTTPHeaders(self.headers, self.contentType, self.contentLength)
		self.reset()
		return res

	def reset(self) -> "HeadersParser":
		self.line.reset()
		self.headers = {}
		self.contentType = None
		self.contentLength = None
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool | None, int]:
		"""Feeds data from chunk, starting at `start` offset. Returns `None`
		when no complete line was read, `True` when a header was read and
		`False` on the empty line that ends the headers."""
		line, read = self.line.feed(chunk, start)
		if line is None:
			return None, read
		elif not line:
			return False, read
		# Header values may be Latin-1 (RFC 7230 obs-text)
		ln: str = line.decode("latin-1")
		i = ln.find(":")
		if i == -1:
			raise HTTPParseError(f"Malformed header line: {ln!r}")
		h = ln[:i].lower().strip()
		v = ln[i + 1 :].strip()
		if h == "content-length":
			try:
				self.contentLength = int(v)
			except ValueError as e:
				raise HTTPParseError(f"Invalid Content-Length: {v!r}") from e
			if self.contentLength < 0:
				raise HTTPParseError(f"Invalid Content-Length: {v!r}")
		elif h == "content-type":
			self.contentType = v
		self.headers[headername(h)] = v
		return True, read

	def __str__(self) -> str:
		return f"HeadersParser({self.headers})"


class BodyLengthParser:
	"""Parses the body of a request with Content-Length set"""

	__slots__ = ["expected", "read", "data"]

	def __init__(self) -> None:
		self.expected: int = 0
		self.read: int = 0
		self.data: list[bytes] = []

	def flush(self) -> HTTPBodyBlob:
		res = HTTPBodyBlob(b"".join(self.data), self.read, 0)
		self.reset()
		return res

	def reset(self, length: int = 0) -> "BodyLengthParser":
		self.expected = length
		self.read = 0
		self.data.clear()
		return self

	def feed(self, chunk: bytes, start: int = 0) -> tuple[bool, int]:
		"""Returns `True` once the expected length was read."""
		to_read: int = min(len(chunk) - start, self.expected - self.read)
		self.data.append(chunk[start : start + to_read])
		self.read += to_read
		return self.read >= self.expected, to_read


class HTTPParser:
	"""A stateful HTTP request parser, fed with chunks as they come from
	the socket. It may yield more than one request per chunk when the client
	pipelines requests."""

	METHOD_HAS_BODY: ClassVar[set[str]] = {"POST", "PUT", "PATCH", "DELETE"}

	def __init__(self) -> None:
		self.message: MessageParser = MessageParser()
		self.headers: HeadersParser = HeadersParser()
		self.body: BodyLengthParser = BodyLengthParser()
		self.parser: MessageParser | HeadersParser | BodyLengthParser = self.message
		self.requestLine: HTTPRequestLine | None = None
		self.requestHeaders: HTTPHeaders | None = None

	def reset(self) -> "HTTPParser":
		self.message.reset()
		self.headers.reset()
		self.body.reset()
		self.parser = self.message
		self.requestLine = None
		self.requestHeaders = None
		return self

	def request(self, body: HTTPBodyBlob) -> HTTPRequest:
		line = self.requestLine
		headers = self.requestHeaders
		if line is None or headers is None:
			raise HTTPParseError("Request is incomplete")
		self.reset()
		return HTTPRequest(
			method=line.method,
			path=line.path,
			query=line.query,
			headers=headers,
			body=body,
			protocol=line.protocol,
		)

	def feed(self, chunk: bytes) -> Iterator[HTTPAtom]:
		size: int = len(chunk)
		offset: int = 0
		while offset < size:
			if self.parser is self.message:
				has_line, read = self.message.feed(chunk, offset)
				offset += read
				if has_line:
					self.requestLine = self.message.flush()
					if self.requestLine:
						yield self.requestLine
						self.parser = self.headers
			elif self.parser is self.headers:
				ended, read = self.headers.feed(chunk, offset)
				offset += read
				if ended is False:
					headers = self.headers.flush()
					self.requestHeaders = headers
					yield headers
					# The body is framed by its length whatever the method, so
					# that it is never read as the next pipelined request.
					if headers.contentLength:
						self.parser = self.body.reset(headers.contentLength)
						yield HTTPProcessingStatus.Body
					else:
						yield self.request(HTTPBodyBlob())
			else:
				complete, read = self.body.feed(chunk, offset)
				offset += read
				if complete:
					body = self.body.flush()
					# Only the methods that carry a body get to keep it
					line = self.requestLine
					has_body = bool(line and line.method in self.METHOD_HAS_BODY)
					yield self.request(body if has_body else HTTPBodyBlob())


# EOF
