from .config import ServeConfig, ConfigError  # NOQA: F401
from .http.model import (
	HTTPRequest,
	HTTPResponse,
	HTTPRequestError,
)  # NOQA: F401
from .services.files import FileService  # NOQA: F401
from .server import run  # NOQA: F401

__version__: str = "1.0.0"

# EOF
