import functools
import logging
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from palace.ill.service.logging.configuration import LogLevel

P = ParamSpec("P")
T = TypeVar("T")


def _with_prefix(message_prefix: str | None, message: str) -> str:
    return f"{message_prefix}: {message}" if message_prefix else message


@contextmanager
def elapsed_time_logging(
    *,
    log_method: Callable[[str], None],
    message_prefix: str | None = None,
    skip_start: bool = False,
) -> Generator[None]:
    """Log how long the body of a `with` block takes.

    A block that raises is logged as failed, naming the exception, and the
    exception propagates.

    :param log_method: Called with each message, e.g. `self.log.info`.
    :param message_prefix: Prepended to every message.
    :param skip_start: Only log when the block finishes.
    """
    if not skip_start:
        log_method(_with_prefix(message_prefix, "Starting..."))
    started = time.perf_counter()
    outcome = "Completed"
    try:
        yield
    except Exception as e:
        outcome = f"Failed (raised {e.__class__.__name__})"
        raise
    finally:
        elapsed = time.perf_counter() - started
        log_method(
            _with_prefix(
                message_prefix, f"{outcome}. (elapsed time: {elapsed:0.4f} seconds)"
            )
        )


def log_elapsed_time(
    *,
    log_level: LogLevel,
    message_prefix: str | None = None,
    skip_start: bool = False,
) -> Callable[[Callable[P, T]], Callable[P, T]]:
    """Decorator version of `elapsed_time_logging`.

    Only works on methods and classmethods of a LoggerMixin, since the
    logger is found through the first argument.
    """

    def outer(fn: Callable[P, T]) -> Callable[P, T]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            owner = args[0] if args else None
            if isinstance(owner, LoggerMixin) or (
                isinstance(owner, type) and issubclass(owner, LoggerMixin)
            ):
                log_method = getattr(owner.logger(), log_level.name)
            else:
                raise RuntimeError(
                    "Decorator must be applied to a method of a LoggerMixin or a subclass of LoggerMixin."
                )

            with elapsed_time_logging(
                log_method=log_method,
                message_prefix=message_prefix,
                skip_start=skip_start,
            ):
                return fn(*args, **kwargs)

        return wrapper

    return outer


class LoggerMixin:
    """Gives a class a logger named `<module>.<class name>`."""

    @classmethod
    @functools.cache
    def logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @property
    def log(self) -> logging.Logger:
        return self.logger()


def pluralize(count: int, singular: str, plural: str | None = None) -> str:
    """'1 target', '3 targets'."""
    if plural is None:
        plural = singular + "s"
    return f"{count} {singular if count == 1 else plural}"
