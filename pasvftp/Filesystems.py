import asyncio
import functools
import os
from typing import List, Iterable, TYPE_CHECKING

from .Errors import FilesystemError, InvalidFilename

if TYPE_CHECKING:
    from .Config import ServerConfig

__all__ = ['AbstractFilesystem', 'BlockingFilesystem', 'PROHIBITED_FILENAME_SYMBOLS']

PROHIBITED_FILENAME_SYMBOLS = ('\\', '/', '\x00')


class AsyncFileContext:

    def __init__(self, filesystem: 'AbstractFilesystem', args, kwargs):
        self.close = None
        self.filesystem = filesystem
        self.args = args
        self.kwargs = kwargs

    async def __aenter__(self):
        self.file = await self.filesystem._open(*self.args, **self.kwargs)
        self.write = functools.partial(self.filesystem.write, self.file)
        self.read = functools.partial(self.filesystem.read, self.file)
        self.flush = functools.partial(self.filesystem.flush, self.file)
        self.close = functools.partial(self.filesystem.close, self.file)
        return self

    async def __aexit__(self, *args):
        if self.close is not None:
            await self.close()

    def __await__(self):
        return self.__aenter__().__await__()


class AbstractFilesystem:
    """
    A class used to interact with the file system below one fixed
    server root.

    There is no working directory: every client supplied name is a
    plain filename joined to the root, so names carrying a path
    separator (or "." and "..") are refused before any I/O happens.
    """

    def __init__(self, root: str):
        if not os.path.isabs(root):
            raise FilesystemError("the root directory should always be absolute")
        self._root = root

    @property
    def root(self) -> str:
        return self._root

    # method bellow manage path between ftp handler and filesystem,
    # and has no need to deal with I/O

    def validname(self, name: str) -> bool:
        if not name or name in ('.', '..'):
            return False
        for char in PROHIBITED_FILENAME_SYMBOLS + (os.sep,):
            if char in name:
                return False
        return True

    def ftp2fs(self, name: str) -> str:
        """
        Translate a filename coming from the client into the absolute
        real filesystem path below the root.

        Example (having "/srv/public_ftp" as root directory)

        >>> self.ftp2fs("bar.txt")
        '/srv/public_ftp/bar.txt'
        """
        if not self.validname(name):
            raise InvalidFilename("prohibited filename %r" % name)
        return os.path.join(self.root, name)

    def format_list(self, basedir: str, listing: List[str]) -> Iterable[str]:
        """
        Yield one "d:name" or "f:name" entry per name in listing.
        Entries vanishing between listdir() and stat() are skipped.
        """
        for name in listing:
            path = os.path.join(basedir, name)
            try:
                isdir = os.path.isdir(path)
            except OSError:
                continue
            yield ('d:' if isdir else 'f:') + name

    # file management

    def open(self, *args, **kwargs):
        return AsyncFileContext(self, args, kwargs)

    async def _open(self, path: str, mode: str):
        raise NotImplementedError

    async def read(self, file, *args, **kwargs):
        raise NotImplementedError

    async def write(self, file, *args, **kwargs):
        raise NotImplementedError

    async def flush(self, file):
        raise NotImplementedError

    async def close(self, file):
        raise NotImplementedError

    async def isfile(self, path: str) -> bool:
        raise NotImplementedError

    async def lexists(self, path: str) -> bool:
        raise NotImplementedError

    async def remove(self, path: str):
        raise NotImplementedError

    async def rename(self, src: str, dst: str):
        raise NotImplementedError

    # directory management

    async def makedirs(self, path: str):
        raise NotImplementedError

    async def listentries(self, path: str) -> List[str]:
        """Return format_list() of path's children, sorted by name."""
        raise NotImplementedError


class BlockingFilesystem(AbstractFilesystem):
    """
    Plain os/builtin calls, each pushed to the loop's default executor
    so a slow disk never stalls other sessions. OSError is re-raised as
    FilesystemError.
    """

    def __init__(self, root: str, loop: asyncio.AbstractEventLoop = None):
        AbstractFilesystem.__init__(self, root)
        self.loop = loop

    @classmethod
    def from_config(cls, config: 'ServerConfig') -> 'BlockingFilesystem':
        return cls(config.root)

    async def _run(self, func, *args):
        loop = self.loop or asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(func, *args))
        except OSError as err:
            raise FilesystemError(str(err)) from err

    async def _open(self, path: str, *args, **kwargs):
        return await self._run(functools.partial(open, path, *args, **kwargs))

    async def read(self, file, *args, **kwargs):
        return await self._run(functools.partial(file.read, *args, **kwargs))

    async def write(self, file, *args, **kwargs):
        return await self._run(functools.partial(file.write, *args, **kwargs))

    async def flush(self, file):
        return await self._run(file.flush)

    async def close(self, file):
        return await self._run(file.close)

    async def isfile(self, path: str) -> bool:
        return await self._run(os.path.isfile, path)

    async def lexists(self, path: str) -> bool:
        return await self._run(os.path.lexists, path)

    async def remove(self, path: str):
        return await self._run(os.remove, path)

    async def rename(self, src: str, dst: str):
        return await self._run(os.rename, src, dst)

    async def makedirs(self, path: str):
        return await self._run(functools.partial(os.makedirs, path, exist_ok=True))

    async def listentries(self, path: str) -> List[str]:
        def entries():
            return list(self.format_list(path, sorted(os.listdir(path))))
        return await self._run(entries)
