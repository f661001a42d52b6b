"""Basic smoke tests."""

import streamlist
import streamlist.cli


def test_version_defined() -> None:
    assert isinstance(streamlist.__version__, str)


def test_console_entrypoint_importable() -> None:
    assert callable(streamlist.cli.main)
