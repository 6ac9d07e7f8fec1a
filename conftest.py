"""Pytest configuration for the documentation snippets."""

from os import chdir, getcwd
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any

from sybil import Sybil
from sybil.parsers.markdown import PythonCodeBlockParser, SkipParser


def documentation_setup(namespace: dict[str, Any]) -> None:
    """Run each documentation file inside its own temporary directory."""
    tmp = TemporaryDirectory()
    namespace["_tmp_dir"] = tmp
    namespace["_old_cwd"] = getcwd()
    chdir(tmp.name)


def documentation_teardown(namespace: dict[str, Any]) -> None:
    """Return to the original directory and remove the temporary one."""
    chdir(namespace.pop("_old_cwd"))
    namespace.pop("_tmp_dir").cleanup()


pytest_collect_file = Sybil(
    parsers=[
        PythonCodeBlockParser(),
        SkipParser(),
    ],
    path=str(Path(__file__).parent / "docs"),
    pattern="**/*.md",
    setup=documentation_setup,
    teardown=documentation_teardown,
).pytest()
