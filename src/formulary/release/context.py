"""
Run-scoped state shared read-only by every pipeline task.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from formulary.config import RunConfig
from formulary.exceptions import RunCancelledError


class CancelSignal:
    """
    One-shot, run-wide cancellation signal.

    Fired by the process's termination handlers or by the controller when the
    run ends; tasks consult it before starting each blocking step, and the
    controller cancels in-flight work when it fires.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        """Fire the signal. Later calls keep the first reason."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def check(self) -> None:
        """
        Raise if the signal has fired.

        Raises:
            RunCancelledError: If cancellation was requested.
        """
        if self._event.is_set():
            raise RunCancelledError(reason=self.reason)

    async def wait(self) -> None:
        await self._event.wait()


@dataclass
class RunContext:
    """Configuration, cancellation signal and diagnostic sink for one run."""

    config: RunConfig
    logger: logging.Logger
    cancel_signal: CancelSignal = field(default_factory=CancelSignal)
