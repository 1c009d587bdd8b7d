import asyncio
import socket
import time
from pathlib import Path

import pytest
from conftest import exchange, parseReplies, parseReply, request, service

from servedir.http.model import HTTPBodyWriter
from servedir.server import (
	SERVER_BAD_REQUEST,
	AIOSocketBodyWriter,
	AIOSocketServer,
	ServerOptions,
)


def send(root: Path, payload: bytes, **options: bool | int) -> bytes:
	return asyncio.run(exchange(service(root, **options), payload))


def test_get(site: Path) -> None:
	reply = parseReply(send(site, request("/hello.txt")))
	assert reply.status == 200
	assert reply.headers["Content-Length"] == "13"
	assert reply.headers["Content-Type"] == "text/plain; charset=utf-8"
	assert reply.headers["Connection"] == "close"
	assert reply.body == b"Hello, world!"


def test_head(site: Path) -> None:
	reply = parseReply(send(site, request("/hello.txt", method="HEAD")))
	assert reply.status == 200
	assert reply.headers["Content-Length"] == "13"
	assert reply.body == b""


def test_range(site: Path) -> None:
	reply = parseReply(send(site, request("/r.txt", {"Range": "bytes=2-5"})))
	assert reply.status == 206
	assert reply.headers["Content-Range"] == "bytes 2-5/10"
	assert reply.body == b"2345"


def test_unsatisfiable_range(site: Path) -> None:
	reply = parseReply(send(site, request("/r.txt", {"Range": "bytes=20-"})))
	assert reply.status == 416
	assert reply.headers["Content-Range"] == "bytes */10"
	assert reply.headers["Content-Length"] == "0"
	assert reply.body == b""


def test_large_file(site: Path) -> None:
	data = bytes(range(256)) * 1024
	(site / "large.bin").write_bytes(data)
	reply = parseReply(send(site, request("/large.bin")))
	assert reply.status == 200
	assert reply.headers["Content-Type"] == "application/octet-stream"
	assert reply.body == data
	reply = parseReply(send(site, request("/large.bin", {"Range": "bytes=1000-"})))
	assert reply.status == 206
	assert reply.body == data[1000:]


def test_empty_file(site: Path) -> None:
	(site / "empty.txt").write_bytes(b"")
	reply = parseReply(send(site, request("/empty.txt")))
	assert reply.status == 200
	assert reply.headers["Content-Length"] == "0"
	assert reply.body == b""


def test_keep_alive_pipelining(site: Path) -> None:
	payload = (
		request("/hello.txt", close=False)
		+ request("/r.txt", {"Range": "bytes=-2"}, close=False)
		+ request("/r.txt")
	)
	first, second, third = parseReplies(send(site, payload))
	assert first.status == 200
	assert "Connection" not in first.headers
	assert first.body == b"Hello, world!"
	assert second.status == 206
	assert second.body == b"89"
	assert third.status == 200
	assert third.headers["Connection"] == "close"
	assert third.body == b"0123456789"


def test_idle_connection_is_closed(site: Path) -> None:
	(reply,) = parseReplies(send(site, request("/hello.txt", close=False)))
	assert reply.status == 200


def test_http10_closes(site: Path) -> None:
	data = send(site, b"GET /hello.txt HTTP/1.0\r\n\r\n")
	assert data.startswith(b"HTTP/1.0 200 OK\r\n")
	reply = parseReply(data)
	assert reply.headers["Connection"] == "close"
	assert reply.body == b"Hello, world!"


def test_malformed_request(site: Path) -> None:
	assert send(site, b"NONSENSE\r\n\r\n") == SERVER_BAD_REQUEST
	reply = parseReply(send(site, b"GET /hello.txt HTTP/1.1\r\nBroken\r\n\r\n"))
	assert reply.status == 400


def test_traversal(site: Path) -> None:
	for path in ("/../outside/secret.txt", "/%2e%2e/outside/secret.txt"):
		data = send(site, request(path))
		assert parseReply(data).status == 400
		assert b"TOP_SECRET" not in data


def test_not_modified(site: Path) -> None:
	etag = parseReply(send(site, request("/hello.txt"))).headers["ETag"]
	reply = parseReply(send(site, request("/hello.txt", {"If-None-Match": etag})))
	assert reply.status == 304
	assert reply.headers["ETag"] == etag
	assert "Content-Length" not in reply.headers
	assert reply.body == b""


def test_method_not_allowed(site: Path) -> None:
	reply = parseReply(send(site, request("/hello.txt", method="DELETE", close=False)))
	assert reply.status == 405
	assert reply.headers["Allow"] == "GET, HEAD"
	assert reply.headers["Connection"] == "close"


def test_listing(site: Path) -> None:
	reply = parseReply(send(site, request("/")))
	assert reply.status == 200
	assert reply.headers["Content-Type"] == "text/html; charset=utf-8"
	assert int(reply.headers["Content-Length"]) == len(reply.body)
	assert b'href="/hello.txt"' in reply.body


def test_spa(site: Path) -> None:
	(site / "index.html").write_text("<p>SPA</p>")
	reply = parseReply(send(site, request("/deep/link"), spaMode=True))
	assert reply.status == 200
	assert reply.body == b"<p>SPA</p>"


def test_body_of_get_does_not_leak_into_next_request(site: Path) -> None:
	payload = (
		b"GET /hello.txt HTTP/1.1\r\nHost: localhost\r\nContent-Length: 5\r\n\r\nhello"
		+ request("/r.txt")
	)
	first, second = parseReplies(send(site, payload))
	assert first.status == 200
	assert first.body == b"Hello, world!"
	assert second.status == 200
	assert second.body == b"0123456789"


def test_whitespace_in_range(site: Path) -> None:
	reply = parseReply(send(site, request("/r.txt", {"Range": "bytes=2 - 5"})))
	assert reply.status == 206
	assert reply.body == b"2345"


# -----------------------------------------------------------------------------
# Connections
# -----------------------------------------------------------------------------


def test_peer_closing_mid_transfer(site: Path) -> None:
	(site / "big.bin").write_bytes(b"\x00" * (8 * 1024 * 1024))

	async def transfer() -> socket.socket:
		loop = asyncio.get_running_loop()
		server, client = socket.socketpair()
		server.setblocking(False)
		client.setblocking(False)
		task = loop.create_task(
			AIOSocketServer.OnRequest(
				service(site),
				server,
				loop=loop,
				options=ServerOptions(keepalive=2.0, logRequests=False),
			)
		)
		await loop.sock_sendall(client, request("/big.bin"))
		assert await asyncio.wait_for(loop.sock_recv(client, 1024), 5.0)
		client.close()
		# The handler gives up on the transfer instead of waiting for the peer
		await asyncio.wait_for(task, 5.0)
		return server

	server = asyncio.run(transfer())
	assert server.fileno() == -1


def test_serve_cancels_connections_after_grace(site: Path) -> None:
	async def serve() -> tuple[bytes, bytes, float]:
		running: bool = True
		ready = asyncio.Event()
		ports: list[int] = []

		def onReady(port: int) -> None:
			ports.append(port)
			ready.set()

		options = ServerOptions(
			host="127.0.0.1",
			port=0,
			polling=0.05,
			keepalive=30.0,
			grace=0.2,
			logRequests=False,
			stopSignals=False,
			condition=lambda: running,
		)
		task = asyncio.create_task(
			AIOSocketServer.Serve(service(site), options, onReady=onReady)
		)
		await asyncio.wait_for(ready.wait(), 5.0)
		reader, writer = await asyncio.open_connection("127.0.0.1", ports[0])
		writer.write(request("/hello.txt", close=False))
		await writer.drain()
		head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), 5.0)
		# The connection is now idle and kept alive
		started = time.monotonic()
		running = False
		await asyncio.wait_for(task, 5.0)
		elapsed = time.monotonic() - started
		rest = await asyncio.wait_for(reader.read(), 5.0)
		writer.close()
		return head, rest, elapsed

	head, rest, elapsed = asyncio.run(serve())
	assert head.startswith(b"HTTP/1.1 200 OK\r\n")
	assert rest == b"Hello, world!"
	# Stopped by the grace period, well before the keep-alive expires
	assert elapsed < 5.0


def test_bind_tries_next_ports() -> None:
	held = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
	held.bind(("127.0.0.1", 0))
	held.listen()
	port = held.getsockname()[1]
	try:
		server, bound = AIOSocketServer.Bind(ServerOptions(host="127.0.0.1", port=port))
		server.close()
	finally:
		held.close()
	assert port < bound <= port + 4


def test_bind_port() -> None:
	server, bound = AIOSocketServer.Bind(ServerOptions(host="127.0.0.1", port=0))
	try:
		assert bound == server.getsockname()[1]
		assert bound > 0
	finally:
		server.close()

def test_body_writers_send_files_themselves() -> None:
	class Writer(HTTPBodyWriter):
		async def _writeBytes(self, chunk, more=False):
			return True

	with pytest.raises(TypeError):
		Writer()
	assert "_writeFile" in AIOSocketBodyWriter.__dict__


# EOF
