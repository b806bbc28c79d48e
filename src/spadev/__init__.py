"""Start a front-end dev server next to an ASGI app and route requests to it."""

__version__ = "0.1.0"
