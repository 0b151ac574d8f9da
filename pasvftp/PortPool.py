import logging
from typing import FrozenSet, Iterable, Set

from .Errors import NoAvailablePort

__all__ = ['PortPool']

logger = logging.getLogger(__name__)


class PortPool:
    """
    Fixed set of ports reserved for passive data connections.

    All methods are synchronous and the pool is only touched from the
    event loop thread, so two sessions can never draw the same port.
    """

    def __init__(self, ports: Iterable[int]):
        self._ports = frozenset(ports)
        self._free: Set[int] = set(self._ports)

    def allocate(self) -> int:
        try:
            port = self._free.pop()
        except KeyError:
            raise NoAvailablePort("no free passive port") from None
        logger.debug("allocated passive port %d (%d left)", port, len(self._free))
        return port

    def release(self, port: int):
        if port not in self._ports:
            logger.warning("release of foreign port %r ignored", port)
            return
        if port in self._free:
            logger.warning("port %d released twice, ignored", port)
            return
        self._free.add(port)
        logger.debug("released passive port %d (%d free)", port, len(self._free))

    def is_allocated(self, port: int) -> bool:
        return port in self._ports and port not in self._free

    @property
    def free(self) -> FrozenSet[int]:
        return frozenset(self._free)

    def __len__(self):
        return len(self._free)

    def __bool__(self):
        return True

    def __repr__(self):
        return '<PortPool %d/%d free>' % (len(self._free), len(self._ports))
