"""Dev server lifecycle: spawn, readiness, request gating and proxying."""

from spadev.dev.middleware import DevServerMiddleware, use_dev_server
from spadev.dev.proxy import DevServerProxy
from spadev.dev.script_runner import ScriptRunner
from spadev.dev.startup import DevServerStartup, start_dev_server
from spadev.dev.streams import EventedStreamReader, EventedStreamStringReader
from spadev.models import DevServerConfig, StartupResult

__all__ = [
    "DevServerConfig",
    "DevServerMiddleware",
    "DevServerProxy",
    "DevServerStartup",
    "EventedStreamReader",
    "EventedStreamStringReader",
    "ScriptRunner",
    "StartupResult",
    "start_dev_server",
    "use_dev_server",
]
