from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from ..utils.htmpl import H, html
from .status import HTTP_STATUS

T = TypeVar("T")

CONTENT_TYPE_HTML: str = "text/html; charset=utf-8"

PAGE_STYLE: str = "html { color-scheme: light dark; font: 16px system-ui; }"

# -----------------------------------------------------------------------------
#
# API
#
# -----------------------------------------------------------------------------

# --
# == HTTP Request Response API
#
# Defines the high level API functions (orthogonal to the underlying model)
# to manipulate requests/responses.


def errorPage(status: int, message: str) -> str:
	"""Renders the minimal HTML page that accompanies error statuses."""
	return "".join(
		html(
			H.meta(charset="utf-8"),
			H.meta(name="viewport", content="width=device-width, initial-scale=1"),
			H.style(PAGE_STYLE),
			H.title(str(status)),
			H.h1(str(status)),
			H.p(message),
			doctype="html",
		)
	)


class ResponseFactory(ABC, Generic[T]):
	@abstractmethod
	def respond(
		self,
		content: Any = None,
		contentType: str | None = None,
		contentLength: int | None = None,
		status: int = 200,
		headers: dict[str, str] | None = None,
		message: str | None = None,
	) -> T: ...

	def error(
		self,
		status: int,
		content: str | None = None,
		headers: dict[str, str] | None = None,
	) -> T:
		"""Returns an HTML error page with the given status, `content` being
		the short message displayed in the page."""
		message = HTTP_STATUS.get(status, "Server Error")
		return self.respond(
			content=errorPage(status, message if content is None else content),
			contentType=CONTENT_TYPE_HTML,
			status=status,
			message=message,
			headers=headers,
		)

	def badRequest(self, content: str = "Bad Request") -> T:
		return self.error(400, content)

	def notAuthorized(self, content: str = "Forbidden", *, status: int = 403) -> T:
		return self.error(status, content)

	def notFound(self, content: str = "Not Found") -> T:
		return self.error(404, content)

	def notAllowed(self, allowed: tuple[str, ...] = ("GET", "HEAD")) -> T:
		return self.error(
			405, "Method Not Allowed", headers={"Allow": ", ".join(allowed)}
		)

	def notModified(self, headers: dict[str, str] | None = None) -> T:
		"""A 304 carries the validators and caching headers, but neither a body
		nor a `Content-Length`."""
		return self.respond(content=None, status=304, headers=headers)

	def rangeNotSatisfiable(self, size: int) -> T:
		return self.respond(
			content=None,
			contentLength=0,
			status=416,
			headers={"Content-Range": f"bytes */{size}"},
		)

	def fail(self, content: str = "Internal Server Error", *, status: int = 500) -> T:
		return self.error(status, content)

	def respondHTML(
		self,
		content: str | bytes,
		status: int = 200,
		headers: dict[str, str] | None = None,
	) -> T:
		return self.respond(
			content=content,
			contentType=CONTENT_TYPE_HTML,
			status=status,
			headers=headers,
		)


# EOF
