import asyncio
import socket
import threading
from dataclasses import dataclass
from signal import SIGINT, SIGTERM
from typing import Any, Awaitable, Callable, Literal, NamedTuple, Protocol

from .config import HOST, LOG_REQUESTS, PORT, ServeConfig
from .http.model import (
	HTTPBodyFile,
	HTTPBodyWriter,
	HTTPProcessingStatus,
	HTTPRequest,
	HTTPResponse,
)
from .http.parser import HTTPParseError, HTTPParser
from .services.files import FileService
from .utils.logging import (
	LogLevel,
	debug,
	error,
	event,
	exception,
	info,
	logged,
	warning,
)


class Application(Protocol):
	def process(self, request: HTTPRequest) -> Awaitable[HTTPResponse]: ...


@dataclass(slots=True)
class ServerState:
	isRunning: bool = True

	def stop(self) -> None:
		info("Server stopping…")
		self.isRunning = False

	def onException(
		self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
	) -> None:
		e = context.get("exception")
		if e:
			exception(e)


class ServerOptions(NamedTuple):
	host: str = "0.0.0.0"  # nosec: B104
	port: int = 8080
	backlog: int = 1_024
	# This is the polling timeout for accepting new requests. Every second is
	# good
	polling: float = 1.0
	readsize: int = 16_384
	# Idle time after which a kept-alive connection is closed
	keepalive: float = 5.0
	logRequests: bool = True
	condition: Callable[[], bool] | None = None
	stopSignals: bool = True
	# How long in-flight connections are given to complete on shutdown
	grace: float = 1.0


OPTIONS: ServerOptions = ServerOptions()

SERVER_BAD_REQUEST: bytes = (
	b"HTTP/1.1 400 Bad Request\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 12\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Bad Request\n"
)

SERVER_ERROR: bytes = (
	b"HTTP/1.1 500 Internal Server Error\r\n"
	b"Content-Type: text/plain\r\n"
	b"Content-Length: 22\r\n"
	b"Connection: close\r\n"
	b"\r\n"
	b"Internal Server Error\n"
)


class AIOSocketBodyWriter(HTTPBodyWriter):
	"""Specialized body writer to work with AIO sockets."""

	def __init__(self, client: "socket.socket", loop: asyncio.AbstractEventLoop):
		super().__init__()
		self.client: socket.socket = client
		self.loop: asyncio.AbstractEventLoop = loop

	async def _writeBytes(
		self, chunk: bytes | None | Literal[False], more: bool = False
	) -> bool:
		if chunk:
			await self.loop.sock_sendall(self.client, chunk)
		return True

	async def _writeFile(self, body: HTTPBodyFile) -> bool:
		# NOTE: `sock_sendfile` uses `sendfile(2)` when available and falls
		# back to reading in the executor, so the loop is never blocked. When
		# the peer goes away, the error propagates and the file is closed.
		f = await asyncio.to_thread(open, body.path, "rb")
		try:
			sent = await self.loop.sock_sendfile(
				self.client, f, body.start, body.length
			)
		finally:
			f.close()
		if sent != body.length:
			warning(
				"File truncated during transfer",
				Path=str(body.path),
				Sent=sent,
				Expected=body.length,
			)
			self.shouldClose = True
		return True


class AIOSocketServer:
	"""AsyncIO backend using sockets directly."""

	@classmethod
	async def OnRequest(
		cls,
		app: Application,
		client: socket.socket,
		*,
		loop: asyncio.AbstractEventLoop,
		options: ServerOptions,
	) -> None:
		"""Asynchronous worker, processing the requests of a client socket
		until the connection is closed or times out."""
		size: int = options.readsize
		buffer = bytearray(size)
		keep_alive: bool = True
		status: HTTPProcessingStatus = HTTPProcessingStatus.Processing
		req_count: int = 0
		res_count: int = 0
		parser: HTTPParser = HTTPParser()
		writer: AIOSocketBodyWriter = AIOSocketBodyWriter(client, loop)
		try:
			# NOTE: With keep-alive, all the requests of a browser tab come
			# through this loop, until there's a `Connection: close`, the
			# keep-alive timeout has expired, or a response can't be completed.
			while keep_alive and not writer.shouldClose:
				try:
					n = await asyncio.wait_for(
						loop.sock_recv_into(client, buffer),
						timeout=options.keepalive,
					)
				except (TimeoutError, asyncio.TimeoutError):
					status = HTTPProcessingStatus.Timeout
					break
				if not n:
					# A no-data means a close
					status = HTTPProcessingStatus.NoData
					break
				# NOTE: With HTTP Pipelining, we may receive more than one
				# request in the same payload, so we need to be prepared
				# to answer more than one request.
				try:
					for atom in parser.feed(bytes(buffer[:n])):
						if not isinstance(atom, HTTPRequest):
							continue
						req_count += 1
						res = await cls.SendResponse(atom, app, writer)
						if res:
							res_count += 1
							if options.logRequests:
								event(atom.method, atom.path, Status=res.status)
						if atom.shouldClose or (res and res.shouldClose):
							keep_alive = False
						if not keep_alive or writer.shouldClose:
							break
				except HTTPParseError as e:
					warning("Malformed request", Reason=str(e))
					status = HTTPProcessingStatus.BadFormat
					await loop.sock_sendall(client, SERVER_BAD_REQUEST)
					break
			if logged(LogLevel.Debug):
				debug(
					"Connection closed",
					Client=f"{id(client):x}",
					Status=status.name,
					Requests=req_count,
					Responses=res_count,
				)
		except (ConnectionError, OSError) as e:
			# The peer went away mid-transfer, there's nobody to respond to.
			debug("Connection aborted", Client=f"{id(client):x}", Reason=str(e))
		except asyncio.CancelledError:
			debug("Connection cancelled", Client=f"{id(client):x}")
			raise
		except Exception as e:
			exception(e)
		finally:
			# NOTE: The above loop takes care of keep alive, so we always close
			# the connection on exit.
			client.close()

	@staticmethod
	async def SendResponse(
		request: HTTPRequest,
		app: Application,
		writer: HTTPBodyWriter,
	) -> HTTPResponse | None:
		"""Processes the request within the application and sends a response
		using the given writer. Once the head is sent, a failure can only
		abort the connection."""
		try:
			res: HTTPResponse = await app.process(request)
		except Exception as e:
			exception(e, f"Failed to process {request.method} {request.path}")
			writer.shouldClose = True
			await writer.write(SERVER_ERROR)
			return None
		if request.shouldClose or res.shouldClose:
			res.setHeader("Connection", "close")
		await writer.write(res.head())
		try:
			await writer.write(res.body)
		except (ConnectionError, OSError) as e:
			debug("Response aborted", Path=request.path, Reason=str(e))
			writer.shouldClose = True
		except Exception as e:
			exception(e, f"Failed to send {request.method} {request.path}")
			writer.shouldClose = True
		return res

	@staticmethod
	def Bind(options: ServerOptions) -> tuple[socket.socket, int]:
		"""Binds a listening socket, trying the next few ports when the
		requested one is taken."""
		server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
		server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
		server.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		port: int = options.port
		try:
			server.bind((options.host, port))
		except OSError as e:
			warning(f"Could not bind to {options.host}:{port}, trying other ports.")
			bound: bool = False
			for p in range(options.port + 1, options.port + 5):
				try:
					server.bind((options.host, p))
				except OSError:
					continue
				bound = True
				port = p
				info(f"Found alternate available port: {port}")
				break
			if not bound:
				server.close()
				error(
					f"Unable to bind to {options.host}:{options.port}, aborting.",
					"HOSTPORTERR",
				)
				raise e from e
		# The argument is the backlog of connections that will be accepted before
		# they are refused.
		server.listen(options.backlog)
		# This is what we need to use it with asyncio
		server.setblocking(False)
		return server, server.getsockname()[1]

	@classmethod
	async def Serve(
		cls,
		app: Application,
		options: ServerOptions = ServerOptions(),
		*,
		onReady: Callable[[int], None] | None = None,
	) -> None:
		"""Main server coroutine."""
		server, port = cls.Bind(options)
		tasks: set[asyncio.Task[None]] = set()
		loop = asyncio.get_running_loop()

		# Manage server state
		state = ServerState()
		# Registers handlers for signals and exception (so that we log them). Note
		# that we'll get a `set_wakeup_fd only works in main thread of the main interpreter`
		# when this is not run out of the main thread.
		if (
			options.stopSignals
			and threading.current_thread() is threading.main_thread()
		):
			loop.add_signal_handler(SIGINT, state.stop)
			loop.add_signal_handler(SIGTERM, state.stop)
		loop.set_exception_handler(state.onException)
		if onReady:
			onReady(port)

		try:
			while state.isRunning:
				if options.condition and not options.condition():
					break
				try:
					client, _ = await asyncio.wait_for(
						loop.sock_accept(server), timeout=options.polling or 1.0
					)
				except (TimeoutError, asyncio.TimeoutError):
					continue
				except OSError as e:
					# This can be: [OSError] [Errno 24] Too many open files
					if e.errno == 24:
						await asyncio.sleep(0.1)
					else:
						exception(e)
					continue
				client.setblocking(False)
				task = loop.create_task(
					cls.OnRequest(app, client, loop=loop, options=options)
				)
				tasks.add(task)
				task.add_done_callback(tasks.discard)
		finally:
			server.close()
			# In-flight responses get a grace period, then they're cancelled.
			if tasks:
				_, pending = await asyncio.wait(set(tasks), timeout=options.grace)
				for task in pending:
					task.cancel()
				await asyncio.gather(*pending, return_exceptions=True)
				if pending:
					warning("Cancelled in-flight connections", Count=len(pending))


def lanAddress() -> str | None:
	"""Returns the IPv4 address this machine uses on the local network."""
	s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
	try:
		# NOTE: Connecting a UDP socket sends nothing, it only picks a route.
		s.connect(("10.255.255.255", 1))
		address: str = s.getsockname()[0]
	except OSError:
		return None
	finally:
		s.close()
	return None if address.startswith("127.") else address


def banner(config: ServeConfig, host: str, port: int) -> None:
	lan = lanAddress()
	info(f"Serving {config.root.name or config.root}/", icon="🚀")
	info(
		"Listening",
		Local=f"http://{host}:{port}",
		Network=f"http://{lan}:{port}" if lan else "not available",
	)
	if not config.allowListing:
		info("Directory listing disabled")
	if config.spaMode:
		info("SPA mode enabled")
	if config.cacheMaxAge > 0:
		info(f"Cache-Control: max-age={config.cacheMaxAge}")


def run(
	config: ServeConfig,
	*,
	host: str = HOST,
	port: int = PORT,
	backlog: int = OPTIONS.backlog,
	condition: Callable[[], bool] | None = None,
	polling: float = OPTIONS.polling,
	logRequests: bool = LOG_REQUESTS,
	keepalive: float = OPTIONS.keepalive,
	grace: float = OPTIONS.grace,
) -> None:
	"""High level function to serve the configured directory."""
	options = ServerOptions(
		host=host,
		port=port,
		backlog=backlog,
		condition=condition,
		polling=polling,
		logRequests=logRequests,
		keepalive=keepalive,
		grace=grace,
	)
	app = FileService(config)
	try:
		asyncio.run(
			AIOSocketServer.Serve(
				app, options, onReady=lambda p: banner(config, host, p)
			)
		)
	except KeyboardInterrupt:
		event("ManualShutdown")
	event("EOK")


# EOF
