"""Logger adapter with printf-style methods for the Apollo client."""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

_VERB = re.compile(r"%[-+# 0]*\d*(?:\.\d+)?[a-zA-Z%]")


def _render(fmt: str, args: tuple[Any, ...]) -> str:
    remaining = iter(args)

    def substitute(match: re.Match[str]) -> str:
        verb = match.group()
        if verb == "%%":
            return "%"
        try:
            return str(next(remaining))
        except StopIteration:
            return f"%!{verb[-1]}(MISSING)"

    text = _VERB.sub(substitute, fmt)
    extra = [str(arg) for arg in remaining]
    if extra:
        text = f"{text} {' '.join(extra)}"
    return text


def _join(args: tuple[Any, ...]) -> str:
    return " ".join(str(arg) for arg in args)


class ApolloLogger:
    """Writes the Apollo client's log calls to a standard logger."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._logger = logger or logging.getLogger("layotto.apollo")

    def debugf(self, fmt: str, *args: Any) -> None:
        self._logger.debug("%s", _render(fmt, args))

    def infof(self, fmt: str, *args: Any) -> None:
        self._logger.info("%s", _render(fmt, args))

    def warnf(self, fmt: str, *args: Any) -> None:
        self._logger.warning("%s", _render(fmt, args))

    def errorf(self, fmt: str, *args: Any) -> None:
        self._logger.error("%s", _render(fmt, args))

    def debug(self, *args: Any) -> None:
        if args:
            self._logger.debug("%s", _join(args))

    def info(self, *args: Any) -> None:
        if args:
            self._logger.info("%s", _join(args))

    def warn(self, *args: Any) -> None:
        if args:
            self._logger.warning("%s", _join(args))

    def error(self, *args: Any) -> None:
        if args:
            self._logger.error("%s", _join(args))