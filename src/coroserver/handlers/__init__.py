"""
=============================================================================
HANDLERS
=============================================================================

A handler is a generator function taking one argument, the connection
handle. It yields I/O requests and gets their results back:

    def handler(conn):
        name = yield conn.receive_line()
        yield conn.send(b"hi " + name + b"\\n")

=============================================================================
LOADING A HANDLER
=============================================================================

load_handler() resolves the handler named on the command line:

    "package.module:function"   imported with importlib
    "scripts/chat.py"           loaded from the file, function on_connect
    "scripts/chat.py:serve"     loaded from the file, function serve
    "echo_lines"                one of the built-in handlers

A handler module may also set a module-level `port`; the CLI listens on it
when no --port is given.

=============================================================================
"""

import importlib
import importlib.util
import logging
import os
from types import ModuleType
from typing import Optional, Tuple

from .builtin import echo_lines, greeter, hello_ok


logger = logging.getLogger(__name__)

DEFAULT_FUNCTION = "on_connect"

BUILTIN_HANDLERS = {
    "echo_lines": echo_lines,
    "hello_ok": hello_ok,
    "greeter": greeter,
}


def _load_file(path: str) -> ModuleType:
    if not os.path.isfile(path):
        raise ImportError(f"Handler script not found: {path}")

    name = os.path.splitext(os.path.basename(path))[0]
    spec = importlib.util.spec_from_file_location(f"coroserver_handler_{name}", path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot load handler script: {path}")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _split(target: str) -> Tuple[str, Optional[str]]:
    # Windows drive letters ("C:\\x.py") contain a colon too
    location, sep, function = target.rpartition(":")
    if not sep or not location or os.sep in function or "/" in function:
        return target, None
    return location, function


def load_handler(target: str):
    """
    Resolve a handler from a name, module path or script path.

    Returns:
        (handler, module) where module is None for built-in handlers.

    Raises:
        ImportError: The module or script could not be loaded.
        AttributeError: The module has no such function.
        TypeError: The named attribute is not callable.
    """
    if target in BUILTIN_HANDLERS:
        return BUILTIN_HANDLERS[target], None

    location, function = _split(target)

    if location.endswith(".py") or os.path.isfile(location):
        module = _load_file(location)
    else:
        module = importlib.import_module(location)

    function = function or DEFAULT_FUNCTION
    try:
        handler = getattr(module, function)
    except AttributeError:
        raise AttributeError(
            f"Handler module {location!r} has no function {function!r}"
        ) from None

    if not callable(handler):
        raise TypeError(f"Handler {location}:{function} is not callable")

    logger.info(f"Loaded handler {location}:{function}")
    return handler, module


def module_port(module: Optional[ModuleType]) -> Optional[int]:
    """The `port` a handler module asks for, if any."""
    if module is None:
        return None
    port = getattr(module, "port", None)
    if port is None:
        return None
    return int(port)


__all__ = [
    "BUILTIN_HANDLERS",
    "DEFAULT_FUNCTION",
    "echo_lines",
    "greeter",
    "hello_ok",
    "load_handler",
    "module_port",
]
