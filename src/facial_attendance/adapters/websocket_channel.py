"""Streaming recognizer channel over WebSockets."""

from dataclasses import dataclass
from urllib.parse import quote

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from facial_attendance.domain.errors import ChannelClosedError, ChannelError
from facial_attendance.services.transport import ChannelConnector, RecognitionChannel


@dataclass
class WebsocketRecognitionChannel(RecognitionChannel):
    """One open WebSocket connection to the recognizer."""

    connection: ClientConnection

    async def send(self, message: str) -> None:
        """Send one text frame."""
        try:
            await self.connection.send(message)
        except ConnectionClosed as exc:
            raise ChannelClosedError(str(exc)) from exc

    async def receive(self) -> str:
        """Wait for the next message."""
        try:
            message = await self.connection.recv()
        except ConnectionClosed as exc:
            raise ChannelClosedError(str(exc)) from exc
        if isinstance(message, bytes):
            return message.decode("utf-8")
        return message

    async def close(self) -> None:
        """Close the connection."""
        await self.connection.close()


@dataclass
class WebsocketChannelConnector(ChannelConnector):
    """Opens course-scoped WebSocket channels."""

    base_url: str
    token: str
    open_timeout: float = 5.0
    ping_interval: float = 20.0
    ping_timeout: float = 5.0

    def url_for(self, course_id: str) -> str:
        """Build the channel URL for a course and caller."""
        base = self.base_url.rstrip("/")
        return f"{base}/{quote(course_id, safe='')}?token={quote(self.token, safe='')}"

    async def connect(self, course_id: str) -> WebsocketRecognitionChannel:
        """Open a channel or raise ChannelError."""
        try:
            connection = await connect(
                self.url_for(course_id),
                open_timeout=self.open_timeout,
                ping_interval=self.ping_interval,
                ping_timeout=self.ping_timeout,
            )
        except (InvalidURI, InvalidHandshake, OSError, TimeoutError) as exc:
            raise ChannelError(f"Could not open recognition channel: {exc}") from exc
        return WebsocketRecognitionChannel(connection=connection)
