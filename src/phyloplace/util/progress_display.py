"""Progress reporting for long running batch operations.

A function decorated with display_wrap receives a ``ui`` keyword argument,
a context whose series() method wraps the loop being reported on. Progress
is drawn with tqdm on a terminal or in a notebook, written as plain lines
when stdout is a file and discarded otherwise.
"""

import functools
import io
import sys
import threading
import time
from collections.abc import Callable, Iterable, Iterator, Sized
from typing import IO, Any, ParamSpec, Self, TypeVar

from tqdm import notebook, tqdm

from phyloplace.util.misc import in_jupyter

P = ParamSpec("P")
R = TypeVar("R")
T = TypeVar("T")

_BAR_FORMAT = "{desc} {percentage:3.0f}%|{bar}|{elapsed}<{remaining}"


class LogFileOutput:
    """stands in for a tqdm bar, one line of text per refresh"""

    def __init__(self, stream: IO[str] | None = None, **kw: Any) -> None:
        self.n: float = 0
        self.desc = ""
        self._start = time.time()
        self._stream = stream or sys.stdout

    def set_description(self, desc: str = "", refresh: bool = False) -> None:
        self.desc = desc

    def refresh(self) -> None:
        if not self.desc:
            return
        elapsed = f"+{int(time.time() - self._start)}"
        print(f"{elapsed:>6} {round(100 * self.n):3d}% {self.desc}", file=self._stream)

    def close(self) -> None:
        pass


def _select_bar_type() -> type[tqdm | notebook.tqdm | LogFileOutput] | None:
    if sys.stdout.isatty():
        return tqdm
    if in_jupyter():
        return notebook.tqdm
    if isinstance(sys.stdout, io.FileIO):
        return LogFileOutput
    return None


class ProgressContext:
    """progress of a single operation

    Parameters
    ----------
    bar_type
        tqdm compatible class used to draw the progress
    depth
        line offset of the bar, nested operations are drawn below
    mininterval
        minimum seconds between redraws
    """

    def __init__(
        self,
        bar_type: type[tqdm | notebook.tqdm | LogFileOutput] | None = None,
        depth: int = 0,
        mininterval: float = 1.0,
    ) -> None:
        self.bar_type = bar_type
        self.depth = depth
        self.mininterval = mininterval
        self.message = ""
        self._bar: tqdm[Any] | notebook.tqdm[Any] | LogFileOutput | None = None

    def subcontext(self) -> "ProgressContext":
        return self.__class__(
            self.bar_type, depth=self.depth + 1, mininterval=self.mininterval
        )

    def _get_bar(self):
        if self._bar is None and self.bar_type is not None:
            self._bar = self.bar_type(
                total=1,
                position=self.depth,
                leave=True,
                bar_format=_BAR_FORMAT,
                mininterval=self.mininterval,
                dynamic_ncols=True,
            )
        return self._bar

    def display(self, msg: str | None = None, progress: float | None = None) -> None:
        bar = self._get_bar()
        if bar is None:
            return
        if progress is not None:
            bar.n = min(progress, 1.0)
        if msg is not None and msg != self.message:
            self.message = msg
            bar.set_description(msg, refresh=False)
        bar.refresh()

    def series(
        self, items: Iterable[T], noun: str = "", count: int | None = None
    ) -> Iterator[T]:
        """yields each of items, reporting the fraction done before each"""
        if count is None:
            items = items if isinstance(items, Sized) else list(items)
            count = len(items)
        if not count:
            return

        width = len(str(count))
        prefix = f"{noun} " if noun else ""
        for index, item in enumerate(items):
            label = f"{prefix}{index + 1:{width}d}/{count}"
            self.display(msg=label, progress=index / count)
            yield item
        self.display(progress=1.0)

    def done(self) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None


class NullContext(ProgressContext):
    """discards all progress, used when display is off or impossible"""

    def subcontext(self) -> Self:
        return self

    def display(self, msg: str | None = None, progress: float | None = None) -> None:
        pass

    def done(self) -> None:
        pass


NULL_CONTEXT = NullContext()
CURRENT = threading.local()


def display_wrap(slow_function: Callable[P, R]) -> Callable[P, R]:
    """gives slow_function a progress context as its ``ui`` argument

    The wrapped function accepts show_progress, False suppresses display.
    Calls made while another wrapped function runs are nested below it.
    """

    @functools.wraps(slow_function)
    def wrapped(*args: P.args, **kw: P.kwargs) -> R:
        previous = getattr(CURRENT, "context", None)
        parent = previous
        if parent is None:
            bar_type = _select_bar_type()
            parent = (
                NULL_CONTEXT
                if bar_type is None
                else ProgressContext(bar_type, depth=-1)
            )

        show_progress = kw.pop("show_progress", None)
        ui = NULL_CONTEXT if show_progress is False else parent.subcontext()
        kw["ui"] = CURRENT.context = ui
        try:
            return slow_function(*args, **kw)
        finally:
            CURRENT.context = previous
            ui.done()

    return wrapped
