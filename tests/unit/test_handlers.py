"""
Unit tests for handler loading.
"""

import textwrap

import pytest

from coroserver.handlers import (
    BUILTIN_HANDLERS,
    echo_lines,
    load_handler,
    module_port,
)


@pytest.fixture
def handler_script(tmp_path):
    """A handler script with on_connect, a second handler and a port."""
    path = tmp_path / "chat.py"
    path.write_text(textwrap.dedent("""
        port = 7007
        not_a_function = 3

        def on_connect(conn):
            line = yield conn.receive_line()
            yield conn.send(line)

        def shout(conn):
            line = yield conn.receive_line()
            yield conn.send(line.upper())
    """))
    return path


class TestLoadHandler:
    """Tests for load_handler()."""

    def test_builtin(self):
        handler, module = load_handler("echo_lines")

        assert handler is echo_lines
        assert module is None

    def test_all_builtins_resolve(self):
        for name, func in BUILTIN_HANDLERS.items():
            assert load_handler(name)[0] is func

    def test_module_function(self):
        handler, module = load_handler("coroserver.handlers.builtin:hello_ok")

        assert handler.__name__ == "hello_ok"
        assert module.__name__ == "coroserver.handlers.builtin"

    def test_module_default_function(self):
        with pytest.raises(AttributeError):
            load_handler("coroserver.handlers.builtin")

    def test_script_default_function(self, handler_script):
        handler, module = load_handler(str(handler_script))

        assert handler.__name__ == "on_connect"
        assert module_port(module) == 7007

    def test_script_named_function(self, handler_script):
        handler, _ = load_handler(f"{handler_script}:shout")

        assert handler.__name__ == "shout"

    def test_missing_script(self, tmp_path):
        with pytest.raises(ImportError):
            load_handler(str(tmp_path / "nope.py"))

    def test_missing_module(self):
        with pytest.raises(ImportError):
            load_handler("no_such_module_anywhere:serve")

    def test_missing_function(self, handler_script):
        with pytest.raises(AttributeError):
            load_handler(f"{handler_script}:serve")

    def test_not_callable(self, handler_script):
        with pytest.raises(TypeError):
            load_handler(f"{handler_script}:not_a_function")

    def test_module_port_absent(self):
        _, module = load_handler("coroserver.handlers.builtin:greeter")

        assert module_port(module) is None
        assert module_port(None) is None
