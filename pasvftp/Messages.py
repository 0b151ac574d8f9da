"""
Messages exchanged between a control session and its data channel.

The set is closed: a session talks to its channel with SendFile,
ReceiveFile and FileReceived; a channel talks to its session with
RememberMe, ForgetMe and BusyChanged. Each receiver owns one Mailbox and
consumes it in send order.
"""
import asyncio
from typing import Union

__all__ = ['Message', 'RememberMe', 'ForgetMe', 'SendFile', 'ReceiveFile',
           'FileReceived', 'BusyChanged', 'Mailbox']


class Message:
    __slots__ = ('reply',)

    def __init__(self):
        # set by Mailbox.request, resolved by the receiver with a response code
        self.reply: Union[asyncio.Future, None] = None

    def resolve(self, code: str):
        if self.reply is not None and not self.reply.done():
            self.reply.set_result(code)

    def __repr__(self):
        fields = ', '.join('%s=%r' % (name, getattr(self, name))
                           for name in self.__slots__ if name != 'reply')
        return '%s(%s)' % (type(self).__name__, fields)


class RememberMe(Message):
    """A data channel got its client connection and is ready for a transfer."""
    __slots__ = ('channel_id',)

    def __init__(self, channel_id: int):
        super().__init__()
        self.channel_id = channel_id


class ForgetMe(Message):
    """A data channel closed; its identifier is no longer valid."""
    __slots__ = ('channel_id',)

    def __init__(self, channel_id: int):
        super().__init__()
        self.channel_id = channel_id


class SendFile(Message):
    __slots__ = ('path',)

    def __init__(self, path: str):
        super().__init__()
        self.path = path


class ReceiveFile(Message):
    __slots__ = ('path',)

    def __init__(self, path: str):
        super().__init__()
        self.path = path


class FileReceived(Message):
    __slots__ = ()


class BusyChanged(Message):
    __slots__ = ('channel_id', 'busy')

    def __init__(self, channel_id: int, busy: bool):
        super().__init__()
        self.channel_id = channel_id
        self.busy = busy


class Mailbox:
    """Point-to-point FIFO of messages with optional request/reply."""

    def __init__(self):
        self._queue: 'asyncio.Queue[Message]' = asyncio.Queue()
        self.closed = False

    def post(self, message: Message):
        if self.closed:
            message.resolve(None)
            return
        self._queue.put_nowait(message)

    async def request(self, message: Message, failure: str) -> str:
        """
        Post message and wait for the receiver to resolve it.
        Return failure when the mailbox is (or gets) closed before that.
        """
        message.reply = asyncio.get_running_loop().create_future()
        self.post(message)
        code = await message.reply
        return failure if code is None else code

    async def get(self) -> Message:
        return await self._queue.get()

    def task_done(self):
        self._queue.task_done()

    async def join(self):
        await self._queue.join()

    def close(self):
        """Refuse further messages and fail every pending request."""
        self.closed = True
        while True:
            try:
                message = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            message.resolve(None)
            self._queue.task_done()

    def __len__(self):
        return self._queue.qsize()
