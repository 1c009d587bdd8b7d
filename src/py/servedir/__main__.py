import argparse
import sys

from . import __version__, config
from .config import ConfigError, ServeConfig
from .server import run
from .utils.logging import error, info


def main(args: list[str]) -> int:
	# Create the parser
	parser = argparse.ArgumentParser(
		prog="servedir",
		description="Serves a directory over HTTP, for previewing static sites and builds.",
		formatter_class=argparse.ArgumentDefaultsHelpFormatter,  # Shows default values in help
		epilog="Examples: `servedir` serves the current directory, `servedir -p 3000 public` serves ./public on port 3000",
	)

	# Register the options
	parser.add_argument(
		"-p",
		"--port",
		action="store",
		dest="port",
		type=int,
		help="Port to listen on",
		default=config.PORT,
	)
	parser.add_argument(
		"--host",
		action="store",
		dest="host",
		help="Host to bind",
		default=config.HOST,
	)
	parser.add_argument(
		"--no-listing",
		action="store_false",
		dest="listing",
		help="Disable directory listing",
		default=config.ALLOW_LISTING,
	)
	parser.add_argument(
		"--spa",
		action="store_true",
		dest="spa",
		help="Single Page App mode (serve the root index.html for missing paths)",
		default=config.SPA_MODE,
	)
	parser.add_argument(
		"--cache",
		action="store",
		dest="cache",
		type=int,
		metavar="SECONDS",
		help="Cache-Control max-age in seconds, 0 for no-cache",
		default=config.CACHE_MAX_AGE,
	)
	parser.add_argument(
		"--grace",
		action="store",
		dest="grace",
		type=float,
		metavar="SECONDS",
		help="Time given to in-flight responses on shutdown",
		default=1.0,
	)
	parser.add_argument(
		"-q",
		"--quiet",
		action="store_false",
		dest="logRequests",
		help="Do not log requests",
		default=config.LOG_REQUESTS,
	)
	parser.add_argument(
		"-v",
		"--version",
		action="version",
		version=__version__,
	)

	# Add positional argument for the root
	parser.add_argument(
		"root",
		metavar="ROOT",
		nargs="?",
		help="The directory to serve (defaults to the current directory)",
	)

	# Parse the options and arguments
	options = parser.parse_args(args=args)
	try:
		serve_config = ServeConfig.Make(
			options.root,
			allowListing=options.listing,
			spaMode=options.spa,
			cacheMaxAge=options.cache,
		)
	except ConfigError as e:
		error(str(e), "ROOTERR")
		return 2
	info("Starting servedir", Root=str(serve_config.root))
	run(
		serve_config,
		host=options.host,
		port=options.port,
		logRequests=options.logRequests,
		grace=options.grace,
	)
	return 0


def entry() -> None:
	sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
	entry()

# EOF
