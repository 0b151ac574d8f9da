import asyncio
from asyncio import StreamReader, StreamWriter
import errno
import logging
import socket
from typing import Dict, Tuple, Type, Union

from .Authorizer import AbstractAuthorizer, DummyAuthorizer
from .Config import ServerConfig
from .Errors import NoAvailablePort
from .FTPHandlers import FTPHandler
from .Filesystems import AbstractFilesystem, BlockingFilesystem
from .PortPool import PortPool
from .dtp import PassiveDTP

__all__ = ['FTPServer']

logger = logging.getLogger(__name__)


class FTPServer:
    """
    Owns the configuration, the passive port pool and the registries
    through which sessions and data channels find each other.
    """

    handler_class = FTPHandler
    dtp_class = PassiveDTP

    def __init__(self,
                 config: ServerConfig,
                 handler_class: Type[FTPHandler] = None,
                 authorizer: AbstractAuthorizer = None,
                 filesystem: AbstractFilesystem = None,
                 **kwargs):
        self.config = config
        self._start_server_extra_arguments = kwargs
        if handler_class:
            self.handler_class = handler_class
        self.authorizer = authorizer or DummyAuthorizer.from_config(config)
        self.fs = filesystem or BlockingFilesystem.from_config(config)
        self.pool = PortPool(config.passive_ports)
        self.sessions: Dict[int, FTPHandler] = {}
        self.channels: Dict[int, PassiveDTP] = {}
        self._server: Union[asyncio.AbstractServer, None] = None
        self.server_host = config.host
        self.server_port = config.port

    async def start(self):
        # the root is created once here and again per session if it went missing
        await self.fs.makedirs(self.fs.root)
        self._server = await asyncio.start_server(self.dispatcher, self.config.host, self.config.port,
                                                  **self._start_server_extra_arguments)
        for sock in self._server.sockets:
            if sock.family in (socket.AF_INET, socket.AF_INET6):
                host, port, *_ = sock.getsockname()
                if not self.server_port:
                    self.server_port = port
                logger.info("serving on %s:%s, root %s", host, port, self.fs.root)

    async def serve_forever(self):
        await self._server.serve_forever()

    @property
    def address(self) -> Tuple[str, int]:
        return self.server_host, self.server_port

    async def dispatcher(self, reader: StreamReader, writer: StreamWriter):
        remote_host, remote_port, *_ = writer.get_extra_info('peername', ('', ''))
        handler = self.handler_class(remote_host, remote_port, self, reader, writer)
        if not self._accept_new_cons():
            await handler.handle_max_cons()
            return
        self.sessions[handler.session_id] = handler
        await handler.handle()

    def _accept_new_cons(self) -> bool:
        if not self.config.max_cons:
            return True
        return len(self.sessions) < self.config.max_cons

    async def open_passive_channel(self, handler: FTPHandler) -> PassiveDTP:
        """
        Draw a port from the pool and start listening on it.
        Ports that cannot be bound are put back once another one worked
        or the pool ran dry.
        """
        unusable = []
        try:
            while True:
                port = self.pool.allocate()
                channel = self.dtp_class(self, handler.session_id, port)
                try:
                    await channel.listen()
                except OSError as err:
                    if err.errno != errno.EADDRINUSE:
                        self.pool.release(port)
                        raise
                    logger.warning("passive port %d in use, skipped", port)
                    unusable.append(port)
                    continue
                self.channels[channel.channel_id] = channel
                channel.start()
                return channel
        except NoAvailablePort:
            handler.log("no free passive port")
            raise
        finally:
            for port in unusable:
                self.pool.release(port)

    async def close(self):
        if self._server is not None:
            self._server.close()
        for handler in list(self.sessions.values()):
            await handler.on_close()
        for channel in list(self.channels.values()):
            await channel.close()
        if self._server is not None:
            await self._server.wait_closed()
        logger.info("server closed")
