import asyncio
import enum
import itertools
import logging
from asyncio import StreamReader, StreamWriter
from typing import Union, Tuple, TYPE_CHECKING

from . import COMMAND_SUCCEED, COMMAND_FAILED, COMMAND_CONNECTION_CLOSED
from .Authorizer import AbstractAuthorizer
from .Errors import (FTPError, AuthenticationFailed, Conflict, FileNotFound,
                     FilesystemError, ProtocolEnd)
from .Filesystems import AbstractFilesystem
from .Messages import (Message, Mailbox, RememberMe, ForgetMe, BusyChanged,
                       SendFile, ReceiveFile, FileReceived)

if TYPE_CHECKING:
    from .Servers import FTPServer
    from .dtp import PassiveDTP

__all__ = ['FTPHandler', 'ChannelState']

LBRK = '\r\n'

_proto_cmds = {
    'ABOR': dict(
        auth=True, arg=False,
        help='Syntax: ABOR (close the data connection, drop a partial upload).'),
    'DELE': dict(
        auth=True, arg=True,
        help='Syntax: DELE <SP> file-name (delete file).'),
    'FNRC': dict(
        auth=True, arg=False,
        help='Syntax: FNRC (the file sent after STOR is complete).'),
    'LIST': dict(
        auth=True, arg=None,
        help='Syntax: LIST (list files of the server root).'),
    'NOOP': dict(
        auth=False, arg=False,
        help='Syntax: NOOP (just do nothing).'),
    'PASS': dict(
        auth=False, arg=None,
        help='Syntax: PASS [<SP> password] (set user password).'),
    'PASV': dict(
        auth=True, arg=False,
        help='Syntax: PASV (open passive data connection).'),
    'PWD': dict(
        auth=True, arg=False,
        help='Syntax: PWD (get server root directory).'),
    'QUIT': dict(
        auth=False, arg=None,
        help='Syntax: QUIT (quit current session).'),
    'RETR': dict(
        auth=True, arg=True,
        help='Syntax: RETR <SP> file-name (retrieve a file).'),
    'RNFR': dict(
        auth=True, arg=True,
        help='Syntax: RNFR <SP> file-name (rename (source name)).'),
    'RNTO': dict(
        auth=True, arg=True,
        help='Syntax: RNTO <SP> file-name (rename (destination name)).'),
    'STOR': dict(
        auth=True, arg=True,
        help='Syntax: STOR <SP> file-name (store a file).'),
    'USER': dict(
        auth=False, arg=None,
        help='Syntax: USER <SP> user-name (set username).'),
}

logger = logging.getLogger(__name__)


class ChannelState(enum.Enum):
    UNREGISTERED = 'unregistered'
    IDLE = 'idle'
    BUSY = 'busy'


class FTPHandler:
    """
    One control connection: reads command lines, answers with one of the
    three response codes and drives the session's data channel through
    its mailbox.
    """

    proto_cmds = _proto_cmds
    log_cmds_list = ["DELE", "RNFR", "RNTO", "STOR", "RETR", "FNRC", "ABOR"]
    log_prefix_template = '%(remote_host)s:%(remote_port)s-[%(username)s]'

    _ids = itertools.count(1)

    def __init__(
            self,
            remote_host: str,
            remote_port: int,
            server: 'FTPServer',
            reader: StreamReader,
            writer: StreamWriter
    ):
        # remote attributes
        self.remote_host = remote_host
        self.remote_port = remote_port

        # server attributes
        self.server = server
        self.config = server.config
        self.authorizer: AbstractAuthorizer = server.authorizer
        self.fs: AbstractFilesystem = server.fs
        self.encoding = self.config.encoding

        # command channel attributes
        self.reader = reader
        self.writer = writer

        # data channel, known by id only
        self.session_id = next(self._ids)
        self.inbox = Mailbox()
        self.data_channel_id: Union[int, None] = None
        self.channel_state = ChannelState.UNREGISTERED
        self._listening_id: Union[int, None] = None
        self._registered = asyncio.Event()

        # user-associate attributes
        self.username = ''
        self.authenticated = False
        self.rename_from: Union[str, None] = None

        # other
        self._log_debug = logger.getEffectiveLevel() <= logging.DEBUG
        self._last_response = None
        self._inbox_task: Union[asyncio.Task, None] = None
        self._closing = False
        self._closed = False

    async def handle(self):
        self._inbox_task = asyncio.create_task(self._inbox_loop())
        try:
            if not await self.on_connect():
                return
            while not self._closing:
                parsed = await self.parse_command()
                if parsed is None:
                    self.log("client closed the connection")
                    break
                # apply everything the data channel said so far
                await self.inbox.join()
                line, cmd, arg = parsed
                valid, reason = self.validate_cmd(line, cmd, arg)
                if not valid:
                    self.logline("%s refused: %s" % (cmd, reason))
                    await self.respond(COMMAND_FAILED)
                else:
                    await self.process_cmd(cmd, arg)
        except (ConnectionError, asyncio.IncompleteReadError, ValueError) as err:
            self.log("connection lost: %s" % err)
        finally:
            await self.on_close()

    async def on_connect(self) -> bool:
        self.log("connected")
        try:
            await self.fs.makedirs(self.fs.root)
        except FilesystemError as err:
            logger.error("%s cannot create server root %s: %s", self.log_prefix, self.fs.root, err)
            await self.respond(COMMAND_CONNECTION_CLOSED)
            return False
        await self.push("220 %s%s" % (self.config.banner, LBRK))
        return True

    async def on_close(self):
        if self._closed:
            return
        self._closed = True
        self.rename_from = None
        await self.close_data_channel()
        if self._inbox_task is not None:
            self._inbox_task.cancel()
        self.inbox.close()
        self.server.sessions.pop(self.session_id, None)
        self.writer.close()
        self.log("disconnected")

    async def handle_max_cons(self):
        self.log("too many connections, refused")
        await self.respond(COMMAND_CONNECTION_CLOSED)
        self.writer.close()

    async def parse_command(self) -> Union[Tuple[str, str, str], None]:
        raw = await self.reader.readline()
        if not raw:
            return None
        line = raw.decode(self.encoding, 'replace').rstrip('\r\n')
        cmd = line.split(' ')[0].upper()
        arg = line[len(cmd) + 1:]
        return line, cmd, arg

    def validate_cmd(self, line: str, cmd: str, arg: str) -> Tuple[bool, str]:
        if cmd != 'PASS':
            self.logline("<- %s" % line)
        else:
            self.logline("<- %s %s" % (cmd, '*' * 6))

        if cmd not in self.proto_cmds:
            return False, 'command "%s" not understood' % cmd
        if not arg and self.proto_cmds[cmd]['arg'] is True:
            return False, "command needs argument"
        if self.config.require_auth and not self.authenticated and self.proto_cmds[cmd]['auth']:
            return False, "log in with USER and PASS first"
        return True, ''

    async def process_cmd(self, cmd: str, arg: str):
        method = getattr(self, 'ftp_%s' % cmd)
        try:
            await method(arg)
        except ProtocolEnd:
            self._closing = True
            await self.respond(COMMAND_CONNECTION_CLOSED)
        except FTPError as err:
            self.log_cmd(cmd, arg, COMMAND_FAILED, str(err))
            await self.respond(COMMAND_FAILED)
        except Exception:
            self.log_exception(self)
            await self.respond(COMMAND_FAILED)
        else:
            self.log_cmd(cmd, arg, self._last_response[:3], '')

    def log_cmd(self, cmd: str, arg: str, respcode: str, respstr: str):
        if cmd in self.log_cmds_list:
            line = '%s %s' % (' '.join([cmd, arg]).strip(), respcode)
            if respstr:
                line += ' %r' % respstr
            self.log(line)

    async def push(self, s: str):
        self.writer.write(s.encode(self.encoding))
        await self.writer.drain()

    async def respond(self, code: str, msg: str = '', linebreak: bool = True, sep: str = ' '):
        resp = code + sep + msg if msg or sep == LBRK else code
        self._last_response = resp
        await self.push(resp + LBRK if linebreak else resp)
        self.logline('-> %s' % resp.split(LBRK)[0])

    def log(self, msg: str, logfun=logger.info):
        """Log a msg including additional identifying session data."""
        logfun('%s %s' % (self.log_prefix, msg))

    def logline(self, msg: str, logfun=logger.debug):
        if self._log_debug:
            logfun('%s %s' % (self.log_prefix, msg))

    def log_exception(self, instance):
        logger.exception("Unhandled exception in instance %r", instance)

    @property
    def log_prefix(self):
        return self.log_prefix_template % self.__dict__

    # data channel bookkeeping

    async def _inbox_loop(self):
        while True:
            message = await self.inbox.get()
            try:
                self.on_message(message)
            finally:
                self.inbox.task_done()

    def on_message(self, message: Message):
        self.logline("<= %r" % message)
        if isinstance(message, RememberMe):
            if message.channel_id != self._listening_id:
                self.logline("stale channel #%d ignored" % message.channel_id)
                return
            self._listening_id = None
            self.data_channel_id = message.channel_id
            self.channel_state = ChannelState.IDLE
            self._registered.set()
        elif isinstance(message, ForgetMe):
            if message.channel_id == self._listening_id:
                self._listening_id = None
            if message.channel_id == self.data_channel_id:
                self.forget_data_channel()
        elif isinstance(message, BusyChanged):
            if message.channel_id == self.data_channel_id:
                self.channel_state = ChannelState.BUSY if message.busy else ChannelState.IDLE
        else:
            logger.warning("%s cannot handle %r", self.log_prefix, message)

    def forget_data_channel(self):
        self.data_channel_id = None
        self.channel_state = ChannelState.UNREGISTERED
        self._registered.clear()

    @property
    def data_channel(self) -> Union['PassiveDTP', None]:
        if self.data_channel_id is None:
            return None
        return self.server.channels.get(self.data_channel_id)

    async def close_data_channel(self):
        for channel_id in (self.data_channel_id, self._listening_id):
            channel = self.server.channels.get(channel_id) if channel_id is not None else None
            if channel is not None:
                await channel.close()
        self._listening_id = None
        self.forget_data_channel()

    async def get_idle_channel(self) -> 'PassiveDTP':
        """
        Return the registered data channel if it can take a transfer.
        Right after PASV the client may not have connected yet, so wait a
        little for it to register.
        """
        if self.channel_state is ChannelState.UNREGISTERED and self._listening_id is not None:
            try:
                await asyncio.wait_for(self._registered.wait(), self.config.connect_timeout)
            except asyncio.TimeoutError:
                raise Conflict("data connection not established") from None
        channel = self.data_channel
        if channel is None or self.channel_state is ChannelState.UNREGISTERED:
            raise Conflict("no data connection (use PASV first)")
        if self.channel_state is ChannelState.BUSY:
            raise Conflict("data connection busy")
        return channel

    # identification commands

    async def ftp_USER(self, username: str):
        self.authenticated = False
        self.username = username
        await self.authorizer.validate_username(username)
        await self.respond(COMMAND_SUCCEED)

    async def ftp_PASS(self, password: str):
        try:
            await self.authorizer.validate_password(password)
        except AuthenticationFailed:
            self.log("USER '%s' failed login." % self.username)
            raise
        try:
            await self.authorizer.validate_authentication(self.username, password)
        except AuthenticationFailed:
            self.log("USER '%s' unknown, password accepted alone." % self.username)
        else:
            self.authenticated = True
            self.log("USER '%s' logged in." % self.username)
        await self.respond(COMMAND_SUCCEED)

    # information commands

    async def ftp_PWD(self, line):
        await self.respond(COMMAND_SUCCEED, '"%s"' % self.fs.root)

    async def ftp_LIST(self, line):
        entries = await self.fs.listentries(self.fs.root)
        await self.respond(COMMAND_SUCCEED, LBRK.join(entries), linebreak=False, sep=LBRK)

    async def ftp_NOOP(self, line):
        """Do nothing"""
        await self.respond(COMMAND_SUCCEED)

    # data connection commands

    async def ftp_PASV(self, line):
        # one data channel per session, a new PASV replaces the old one
        await self.close_data_channel()
        channel = await self.server.open_passive_channel(self)
        self._listening_id = channel.channel_id
        await self.respond(COMMAND_SUCCEED, '%s:%d' % (self.config.pasv_host, channel.port))

    async def ftp_ABOR(self, line):
        await self.close_data_channel()
        await self.respond(COMMAND_SUCCEED)

    async def ftp_STOR(self, file: str):
        """Store a file (transfer from the client to the server)."""
        path = self.fs.ftp2fs(file)
        if await self.fs.lexists(path):
            raise Conflict("%s already exists" % file)
        channel = await self.get_idle_channel()
        self.channel_state = ChannelState.BUSY
        code = await channel.inbox.request(ReceiveFile(path), COMMAND_FAILED)
        await self.inbox.join()
        if code != COMMAND_SUCCEED and self.data_channel_id == channel.channel_id:
            self.channel_state = ChannelState.IDLE
        await self.respond(code)

    async def ftp_FNRC(self, line):
        channel = self.data_channel
        if channel is None:
            raise Conflict("no data connection")
        code = await channel.inbox.request(FileReceived(), COMMAND_FAILED)
        await self.inbox.join()
        await self.respond(code)

    async def ftp_RETR(self, file: str):
        """Retrieve a file (transfer from the server to the client)."""
        path = self.fs.ftp2fs(file)
        if not await self.fs.isfile(path):
            raise FileNotFound("%s does not exist" % file)
        channel = await self.get_idle_channel()
        self.channel_state = ChannelState.BUSY
        channel.inbox.post(SendFile(path))
        await self.respond(COMMAND_SUCCEED)

    # file action commands

    async def ftp_DELE(self, file: str):
        path = self.fs.ftp2fs(file)
        if not await self.fs.lexists(path):
            raise FileNotFound("%s does not exist" % file)
        await self.fs.remove(path)
        await self.respond(COMMAND_SUCCEED)

    async def ftp_RNFR(self, file: str):
        path = self.fs.ftp2fs(file)
        if not await self.fs.lexists(path):
            raise FileNotFound("%s does not exist" % file)
        self.rename_from = path
        await self.respond(COMMAND_SUCCEED)

    async def ftp_RNTO(self, file: str):
        path = self.fs.ftp2fs(file)
        if self.rename_from is None:
            raise FileNotFound("no RNFR pending")
        if not await self.fs.lexists(self.rename_from):
            raise FileNotFound("%s vanished" % self.rename_from)
        if await self.fs.lexists(path):
            raise Conflict("%s already exists" % file)
        await self.fs.rename(self.rename_from, path)
        self.rename_from = None
        await self.respond(COMMAND_SUCCEED)

    async def ftp_QUIT(self, line):
        self.rename_from = None
        raise ProtocolEnd("QUIT")
