import asyncio
import socket
from pathlib import Path
from typing import NamedTuple

import pytest

from servedir.config import ServeConfig
from servedir.http.model import HTTPBodyBlob, HTTPBodyFile, HTTPRequest, HTTPResponse
from servedir.server import AIOSocketServer, ServerOptions
from servedir.services.files import FileService


class Reply(NamedTuple):
	"""A response as a client sees it."""

	status: int
	headers: dict[str, str]
	body: bytes


@pytest.fixture
def site(tmp_path: Path) -> Path:
	"""A served root, with a sibling directory holding a secret."""
	root = tmp_path / "root"
	outside = tmp_path / "outside"
	root.mkdir()
	outside.mkdir()
	(outside / "secret.txt").write_text("TOP_SECRET")
	(root / "hello.txt").write_text("Hello, world!")
	(root / "r.txt").write_text("0123456789")
	return root


def bodyOf(res: HTTPResponse) -> bytes:
	"""Materializes the body the transport would send."""
	body = res.body
	if body is None:
		return b""
	elif isinstance(body, HTTPBodyBlob):
		return body.payload
	elif isinstance(body, HTTPBodyFile):
		with open(body.path, "rb") as f:
			f.seek(body.start)
			return f.read(body.length)
	raise AssertionError(f"Unexpected body: {body}")


def process(
	service: FileService,
	path: str,
	headers: dict[str, str] | None = None,
	*,
	method: str = "GET",
) -> HTTPResponse:
	return asyncio.run(service.process(HTTPRequest(method, path, headers=headers)))


def service(root: Path, **options: bool | int) -> FileService:
	return FileService(ServeConfig.Make(root, **options))  # type: ignore[arg-type]


async def exchange(app: FileService, payload: bytes, timeout: float = 5.0) -> bytes:
	"""Sends the raw `payload` to the connection handler over a socket pair
	and returns everything it writes back until it closes the connection."""
	loop = asyncio.get_running_loop()
	server, client = socket.socketpair()
	server.setblocking(False)
	client.setblocking(False)
	task = loop.create_task(
		AIOSocketServer.OnRequest(
			app,
			server,
			loop=loop,
			options=ServerOptions(keepalive=2.0, logRequests=False),
		)
	)
	try:
		await loop.sock_sendall(client, payload)
		chunks: list[bytes] = []
		while True:
			data = await asyncio.wait_for(loop.sock_recv(client, 65_536), timeout)
			if not data:
				break
			chunks.append(data)
		await asyncio.wait_for(task, timeout)
	finally:
		client.close()
	return b"".join(chunks)


def parseReply(data: bytes) -> Reply:
	"""Parses a single response, the body being everything after the head."""
	head, _, body = data.partition(b"\r\n\r\n")
	lines = head.decode("latin-1").split("\r\n")
	headers = {
		k.strip(): v.strip() for k, v in (_.split(":", 1) for _ in lines[1:])
	}
	return Reply(int(lines[0].split(" ", 2)[1]), headers, body)


def parseReplies(data: bytes) -> list[Reply]:
	"""Splits a raw stream of responses, framing bodies by Content-Length.
	Responses without a Content-Length (304) have no body."""
	replies: list[Reply] = []
	while data:
		reply = parseReply(data)
		length = int(reply.headers.get("Content-Length", "0"))
		replies.append(reply._replace(body=reply.body[:length]))
		data = reply.body[length:]
	return replies


def request(
	path: str,
	headers: dict[str, str] | None = None,
	*,
	method: str = "GET",
	close: bool = True,
) -> bytes:
	lines = [f"{method} {path} HTTP/1.1", "Host: localhost"]
	lines += [f"{k}: {v}" for k, v in (headers or {}).items()]
	if close:
		lines.append("Connection: close")
	return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


# EOF
