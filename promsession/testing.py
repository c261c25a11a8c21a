"""
Test helpers for code using promsession.
"""

import asyncio
import inspect
import shlex
from dataclasses import dataclass, field
from typing import List, Optional

from .middleware import Handler


@dataclass
class FakeSession:
    """In-memory session exposing the command and collecting output."""
    raw_command: str = ""
    user: str = "test"
    output: bytearray = field(default_factory=bytearray)
    closed: bool = False

    def command(self) -> List[str]:
        return shlex.split(self.raw_command)

    def write(self, data: bytes) -> int:
        self.output.extend(data)
        return len(data)

    def close(self) -> None:
        self.closed = True


async def run_session(handler: Handler, command: str = "", session: Optional[FakeSession] = None) -> FakeSession:
    """Run ``handler`` for one session and return the session.

    Synchronous handlers run in a worker thread so they do not block the
    event loop. Exceptions raised by the handler propagate.
    """
    session = session if session is not None else FakeSession(raw_command=command)
    try:
        if inspect.iscoroutinefunction(handler):
            await handler(session)
        else:
            result = await asyncio.to_thread(handler, session)
            if inspect.isawaitable(result):
                await result
    finally:
        session.close()
    return session


async def run_sessions(handler: Handler, commands: List[str]) -> List[FakeSession]:
    """Run one session per command concurrently."""
    return list(await asyncio.gather(*(run_session(handler, command) for command in commands)))
