import os
from os import getenv
from pathlib import Path
from typing import NamedTuple

PORT: int = int(getenv("PORT", 8080))

# We want the server to be reachable from other devices on the LAN, so that
# builds can be previewed from a phone.
HOST: str = getenv("HOST", "0.0.0.0")  # nosec: B104

LOG_REQUESTS: bool = getenv("SERVEDIR_LOG_REQUESTS", "1") == "1"
ALLOW_LISTING: bool = getenv("SERVEDIR_LISTING", "1") == "1"
SPA_MODE: bool = getenv("SERVEDIR_SPA", "0") == "1"
CACHE_MAX_AGE: int = int(getenv("SERVEDIR_CACHE", 0))


class ConfigError(ValueError):
	"""The configuration can't be used to start the server."""


class ServeConfig(NamedTuple):
	"""What and how to serve. Built once at startup, never changed."""

	root: Path
	allowListing: bool = True
	spaMode: bool = False
	# Cache-Control max-age in seconds, `0` meaning `no-cache`
	cacheMaxAge: int = 0

	@staticmethod
	def Make(
		root: Path | str | None = None,
		*,
		allowListing: bool = ALLOW_LISTING,
		spaMode: bool = SPA_MODE,
		cacheMaxAge: int = CACHE_MAX_AGE,
	) -> "ServeConfig":
		"""Creates a configuration, normalizing the root to an absolute path.
		Raises a `ConfigError` when the root is not an existing directory."""
		path = Path(os.path.normpath(Path(root or os.getcwd()).absolute()))
		if not path.exists():
			raise ConfigError(f"Root directory does not exist: {path}")
		elif not path.is_dir():
			raise ConfigError(f"Root is not a directory: {path}")
		return ServeConfig(
			root=path,
			allowListing=allowListing,
			spaMode=spaMode,
			cacheMaxAge=max(0, cacheMaxAge),
		)

	@property
	def cacheControl(self) -> str:
		return (
			f"public, max-age={self.cacheMaxAge}" if self.cacheMaxAge > 0 else "no-cache"
		)


# EOF
