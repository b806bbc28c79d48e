"""Global constants for spadev."""

# Port range scanned for the front-end dev server

DEV_SERVER_PORT_START = 5000
DEV_SERVER_PORT_END = 5999

# Child process invocation defaults
DEFAULT_PACKAGE_MANAGER = "npm"
DEFAULT_SCRIPT_NAME = "serve"
DEFAULT_HOST = "localhost"

# Environment variables exported to the dev server process
HOST_URL_ENV_VAR = "DEV_HOST_URL"
DEV_SERVER_PORT_ENV_VAR = "DEV_SERVER_PORT"

# Readiness protocol: marker printed on stdout once the dev server listens
READINESS_MARKER = "DONE"

# Timeouts (seconds). Development-only path, so these are generous.
DEFAULT_STARTUP_TIMEOUT = 120.0
DEFAULT_REQUEST_TIMEOUT = 30.0

# Header names for request forwarding
SPADEV_PROXY_HEADER = "x-spadev-proxy"
