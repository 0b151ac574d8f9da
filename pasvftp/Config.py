import os
from typing import Iterable, List, Union

__all__ = ['ServerConfig', 'parse_port_range']

DEFAULT_PASSIVE_PORTS = range(8801, 8811)


def parse_port_range(value: str) -> List[int]:
    """
    Parse a passive port specification.

    >>> parse_port_range('8801-8803')
    [8801, 8802, 8803]
    >>> parse_port_range('9000')
    [9000]
    """
    value = value.strip()
    if '-' in value:
        first, _, last = value.partition('-')
        start, stop = int(first), int(last)
    else:
        start = stop = int(value)
    if start > stop:
        raise ValueError("invalid port range: %r" % value)
    if start < 1 or stop > 65535:
        raise ValueError("port out of range: %r" % value)
    return list(range(start, stop + 1))


class ServerConfig:
    """
    Everything a server instance needs to know about itself.

    A single value is created at bootstrap and handed by reference to the
    server, its port pool, every session and every data channel.
    """

    def __init__(self,
                 host: str = '127.0.0.1',
                 port: int = 8800,
                 username: str = 'TEST',
                 password: str = 'TEST',
                 root: str = 'public_ftp',
                 passive_ports: Iterable[int] = DEFAULT_PASSIVE_PORTS,
                 masquerade_address: Union[str, None] = None,
                 encoding: str = 'utf8',
                 banner: str = 'pasvftp ready.',
                 chunk_size: int = 65536,
                 connect_timeout: float = 1.0,
                 drain_timeout: float = 0.2,
                 require_auth: bool = False,
                 max_cons: int = 512):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.root = os.path.abspath(root)
        self.passive_ports = list(passive_ports)
        self.masquerade_address = masquerade_address
        self.encoding = encoding
        self.banner = banner
        self.chunk_size = chunk_size
        self.connect_timeout = connect_timeout
        self.drain_timeout = drain_timeout
        self.require_auth = require_auth
        self.max_cons = max_cons
        if not self.passive_ports:
            raise ValueError("at least one passive port is required")
        if len(set(self.passive_ports)) != len(self.passive_ports):
            raise ValueError("duplicate passive ports")

    @classmethod
    def from_args(cls, args) -> 'ServerConfig':
        return cls(
            host=args.host,
            port=args.port,
            username=args.username,
            password=args.password,
            root=args.root,
            passive_ports=parse_port_range(args.passive_ports),
            masquerade_address=args.masquerade_address,
            require_auth=args.require_auth,
        )

    @property
    def pasv_host(self) -> str:
        return self.masquerade_address or self.host

    def __repr__(self):
        return '<ServerConfig %s:%s root=%r ports=%s-%s>' % (
            self.host, self.port, self.root,
            min(self.passive_ports), max(self.passive_ports))
