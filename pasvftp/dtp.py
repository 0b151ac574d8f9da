import asyncio
import itertools
import logging
from asyncio import StreamReader, StreamWriter
from typing import TYPE_CHECKING, Union

from . import COMMAND_SUCCEED, COMMAND_FAILED
from .Errors import FilesystemError
from .Filesystems import AsyncFileContext
from .Messages import (Message, Mailbox, RememberMe, ForgetMe, BusyChanged,
                       SendFile, ReceiveFile, FileReceived)

if TYPE_CHECKING:
    from .Servers import FTPServer

__all__ = ['PassiveDTP']

logger = logging.getLogger(__name__)


class PassiveDTP:
    """
    One passive data channel: listens on a port drawn from the pool,
    accepts a single client, carries one transfer, then closes and hands
    the port back.

    The channel knows its session only by id and looks it up in the
    server registry whenever it has something to say.
    """

    _ids = itertools.count(1)

    def __init__(self, server: 'FTPServer', session_id: int, port: int):
        self.server = server
        self.config = server.config
        self.fs = server.fs
        self.session_id = session_id
        self.channel_id = next(self._ids)
        self.port = port
        self.inbox = Mailbox()

        # transfer state
        self.pending_path: Union[str, None] = None
        self.file_obj: Union[AsyncFileContext, None] = None
        self.received = 0
        self.busy = False

        # connection state
        self.reader: Union[StreamReader, None] = None
        self.writer: Union[StreamWriter, None] = None
        self._listener: Union[asyncio.AbstractServer, None] = None
        self._connected = asyncio.Event()
        self._task: Union[asyncio.Task, None] = None
        self._read_task: Union[asyncio.Task, None] = None
        self._current: Union[Message, None] = None
        self._eof = False
        self._done = False
        self._closed = False

    def __repr__(self):
        return '<PassiveDTP #%d port=%d session=%d>' % (self.channel_id, self.port, self.session_id)

    async def listen(self):
        """Bind the listening socket; OSError propagates to the caller."""
        self._listener = await asyncio.start_server(self._accept, self.config.host, self.port)
        logger.debug("%r listening", self)

    def start(self):
        self._task = asyncio.create_task(self.run())
        return self._task

    async def _accept(self, reader: StreamReader, writer: StreamWriter):
        if self._connected.is_set() or self._closed:
            writer.close()
            return
        self.reader, self.writer = reader, writer
        self._listener.close()
        peer = writer.get_extra_info('peername', ('', ''))
        logger.info("%r connected from %s:%s", self, *peer[:2])
        self._connected.set()

    def post(self, message: Message):
        session = self.server.sessions.get(self.session_id)
        if session is not None:
            session.inbox.post(message)

    def set_busy(self, busy: bool):
        self.busy = busy
        self.post(BusyChanged(self.channel_id, busy))

    async def run(self):
        try:
            await self._connected.wait()
            self.post(RememberMe(self.channel_id))
            await self._serve()
        except (OSError, FilesystemError) as err:
            logger.warning("%r aborted: %s", self, err)
        except Exception:
            logger.exception("%r failed unexpectedly", self)
        finally:
            await self._cleanup()

    async def _serve(self):
        get_task = None
        try:
            while not self._done:
                if self._read_task is None and not self._eof:
                    self._read_task = asyncio.create_task(self.reader.read(self.config.chunk_size))
                if get_task is None:
                    get_task = asyncio.create_task(self.inbox.get())
                waiting = {get_task}
                if self._read_task is not None:
                    waiting.add(self._read_task)
                done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
                if get_task in done:
                    # messages first, the control channel sent them before the client sent bytes
                    message, get_task = get_task.result(), None
                    self._current = message
                    try:
                        await self.on_message(message)
                    except Exception:
                        message.resolve(COMMAND_FAILED)
                        raise
                    finally:
                        self.inbox.task_done()
                    # left set on cancellation, _cleanup resolves it
                    self._current = None
                    continue
                data, self._read_task = self._read_task.result(), None
                if data:
                    await self.on_data(data)
                else:
                    self._eof = True
                    if self.pending_path is None:
                        logger.debug("%r client closed the connection", self)
                        break
        finally:
            if get_task is not None:
                get_task.cancel()

    async def on_data(self, data: bytes):
        if self.file_obj is None:
            logger.debug("%r dropped %d bytes, no upload pending", self, len(data))
            return
        await self.file_obj.write(data)
        self.received += len(data)

    async def on_message(self, message: Message):
        logger.debug("%r <- %r", self, message)
        if isinstance(message, ReceiveFile):
            message.resolve(await self.receive_file(message.path))
        elif isinstance(message, FileReceived):
            message.resolve(await self.file_received())
        elif isinstance(message, SendFile):
            message.resolve(await self.send_file(message.path))
        else:
            logger.warning("%r cannot handle %r", self, message)
            message.resolve(COMMAND_FAILED)

    async def receive_file(self, path: str) -> str:
        if self.busy or self.pending_path is not None:
            return COMMAND_FAILED
        try:
            # exclusive create, STOR never overwrites
            self.file_obj = await self.fs.open(path, 'xb')
        except FilesystemError as err:
            logger.warning("%r cannot open %s for writing: %s", self, path, err)
            return COMMAND_FAILED
        self.pending_path = path
        self.received = 0
        self.set_busy(True)
        return COMMAND_SUCCEED

    async def file_received(self) -> str:
        if self.pending_path is None:
            return COMMAND_FAILED
        result = COMMAND_SUCCEED
        try:
            await self._drain_upload()
            await self.file_obj.flush()
        except (FilesystemError, OSError) as err:
            logger.error("%r upload of %s failed: %s", self, self.pending_path, err)
            result = COMMAND_FAILED
        # file_obj stays set until closed so a cancelled drain is discarded by _cleanup
        try:
            await self.file_obj.close()
        except FilesystemError as err:
            logger.error("%r cannot close %s: %s", self, self.pending_path, err)
            result = COMMAND_FAILED
        self.file_obj = None
        logger.info("%r received %s (%d bytes)", self, self.pending_path, self.received)
        self.pending_path = None
        self.set_busy(False)
        self._done = True
        return result

    async def _drain_upload(self):
        """Pull whatever is still in flight until EOF or until the client goes quiet."""
        while not self._eof:
            if self._read_task is None:
                self._read_task = asyncio.create_task(self.reader.read(self.config.chunk_size))
            done, _ = await asyncio.wait({self._read_task}, timeout=self.config.drain_timeout)
            if not done:
                return
            data, self._read_task = self._read_task.result(), None
            if data:
                await self.on_data(data)
            else:
                self._eof = True

    async def send_file(self, path: str) -> str:
        if self.busy or self.pending_path is not None:
            return COMMAND_FAILED
        self.set_busy(True)
        sent = 0
        try:
            async with self.fs.open(path, 'rb') as file:
                while True:
                    chunk = await file.read(self.config.chunk_size)
                    if not chunk:
                        break
                    self.writer.write(chunk)
                    await self.writer.drain()
                    sent += len(chunk)
        except (FilesystemError, ConnectionError) as err:
            logger.error("%r sending %s failed after %d bytes: %s", self, path, sent, err)
            return COMMAND_FAILED
        else:
            logger.info("%r sent %s (%d bytes)", self, path, sent)
            return COMMAND_SUCCEED
        finally:
            self.set_busy(False)
            self._done = True

    async def close(self):
        """Tear the channel down from outside (ABOR, new PASV, session end)."""
        if self._task is None:
            await self._cleanup()
            return
        if not self._task.done() and not self._closed:
            self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)

    async def _cleanup(self):
        if self._closed:
            return
        self._closed = True
        if self._read_task is not None:
            self._read_task.cancel()
            self._read_task = None
        if self._current is not None:
            self._current.resolve(None)
        self.inbox.close()
        if self._listener is not None:
            self._listener.close()
        if self.file_obj is not None:
            await self._discard_upload()
        if self.writer is not None:
            self.writer.close()
        self.server.channels.pop(self.channel_id, None)
        self.server.pool.release(self.port)
        self.post(ForgetMe(self.channel_id))
        logger.debug("%r closed", self)

    async def _discard_upload(self):
        file_obj, self.file_obj = self.file_obj, None
        path, self.pending_path = self.pending_path, None
        try:
            await file_obj.close()
            await self.fs.remove(path)
        except FilesystemError as err:
            logger.warning("%r cannot discard partial upload %s: %s", self, path, err)
        else:
            logger.info("%r discarded partial upload %s (%d bytes)", self, path, self.received)
