"""
Example host application instrumented with promsession.

Each TCP connection is a session: the first line is the command, the
handler writes a greeting back. Try it with:

    python examples/simple/main.py
    printf 'hello world\\n' | nc localhost 2223
    curl -s localhost:9223/metrics | grep wish_sessions
"""

import asyncio
import shlex

from promsession import CompletionBarrier, Middleware, get_settings
from promsession.logging import get_logger

logger = get_logger("example")


class StreamSession:
    """A session backed by an asyncio stream pair."""

    def __init__(self, raw_command: str, writer: asyncio.StreamWriter):
        self._command = shlex.split(raw_command)
        self._writer = writer

    def command(self):
        return self._command

    def write(self, data: bytes) -> None:
        self._writer.write(data)


async def handler(session: StreamSession) -> None:
    command = " ".join(session.command()) or "nothing"
    session.write(f"Hello, you ran {command}!\n".encode("utf-8"))


async def main() -> None:
    settings = get_settings(address="localhost:9223", app="my-app")
    barrier = CompletionBarrier()

    async with Middleware.from_settings(settings, barrier=barrier) as metrics:
        session_handler = metrics(handler)

        async def on_connection(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            line = await reader.readline()
            session = StreamSession(line.decode("utf-8", "replace").strip(), writer)
            try:
                await session_handler(session)
                await writer.drain()
            finally:
                writer.close()

        server = await asyncio.start_server(on_connection, "localhost", 2223)
        logger.info("Session server listening", address="localhost:2223")
        async with server:
            # The metrics lifecycle owns SIGINT/SIGTERM; its task ends on either.
            await metrics.lifecycle.task

    await barrier.wait()


if __name__ == "__main__":
    asyncio.run(main())
