"""Map lifecycle errors onto click's error reporting."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

import click

from patchgate_core.errors import PatchgateError


class PatchgateClickError(click.ClickException):
    def __init__(self, err: PatchgateError):
        super().__init__(f"[{err.code.value}] {err.message}")
        self.code = err.code


@contextmanager
def reported_errors() -> Iterator[None]:
    """Turn a PatchgateError into a non-zero exit with its code and message."""
    try:
        yield
    except PatchgateError as e:
        raise PatchgateClickError(e) from e
