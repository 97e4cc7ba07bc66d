"""Cooperative cancellation shared by a run and its nodes."""

import asyncio

from studio.errors import RunCancelledError


class CancellationSignal:
    """
    One-shot abort flag that nodes can poll or await.

    A child signal aborts whenever its parent does; aborting a child leaves
    the parent untouched. The runtime gives each node a child of the run's
    signal.
    """

    def __init__(self, parent: "CancellationSignal | None" = None):
        self._event = asyncio.Event()
        self._children: list[CancellationSignal] = []
        self.reason: str | None = None
        if parent is not None:
            parent._children.append(self)
            if parent.aborted:
                self.abort(parent.reason or "Run cancelled")

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def abort(self, reason: str = "Run cancelled") -> None:
        if self._event.is_set():
            return
        self.reason = reason
        self._event.set()
        for child in self._children:
            child.abort(reason)

    def raise_if_aborted(self) -> None:
        if self.aborted:
            raise RunCancelledError(self.reason or "Run cancelled")

    async def wait(self) -> None:
        await self._event.wait()

    def child(self) -> "CancellationSignal":
        return CancellationSignal(parent=self)
