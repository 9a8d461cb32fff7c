"""A Typer subclass whose commands may be coroutine functions."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from functools import partial, wraps
from typing import Any

from typer import Typer


class AsyncTyper(Typer):
    """Runs async commands in a fresh event loop; sync commands are registered as-is."""

    @staticmethod
    def maybe_run_async(decorator: Callable[..., Any], func: Callable[..., Any]) -> Any:
        """Register `func` with `decorator`, wrapping it in `asyncio.run` if it is a coroutine function."""
        if inspect.iscoroutinefunction(func):

            @wraps(func)
            def runner(*args: Any, **kwargs: Any) -> Any:
                # Fails with "cannot be called from a running event loop" when invoked from async code.
                return asyncio.run(func(*args, **kwargs))

            decorator(runner)
        else:
            decorator(func)
        return func

    def command(self, *args: Any, **kwargs: Any) -> Callable[..., Any]:
        """Create a command that supports async functions."""
        decorator = super().command(*args, **kwargs)
        return partial(self.maybe_run_async, decorator)
