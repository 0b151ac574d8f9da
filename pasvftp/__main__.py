import argparse
import asyncio
import logging
import sys

try:
    import uvloop
except ImportError:
    uvloop = None

from . import __ver__
from .Config import ServerConfig
from .Servers import FTPServer

logger = logging.getLogger('pasvftp')


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='pasvftp', description='Minimal passive-mode FTP server.')
    parser.add_argument('--host', default='127.0.0.1', help='control and data listen address')
    parser.add_argument('--port', type=int, default=8800, help='control port')
    parser.add_argument('--root', default='public_ftp', help='server root directory')
    parser.add_argument('--username', default='TEST')
    parser.add_argument('--password', default='TEST')
    parser.add_argument('--passive-ports', default='8801-8810', help='port range, e.g. 8801-8810')
    parser.add_argument('--masquerade-address', default=None, help='host advertised in PASV replies')
    parser.add_argument('--require-auth', action='store_true',
                        help='refuse commands other than USER/PASS/NOOP/QUIT before login')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'])
    parser.add_argument('--version', action='version', version='%(prog)s ' + __ver__)
    return parser


async def serve(config: ServerConfig):
    server = FTPServer(config)
    await server.start()
    try:
        await server.serve_forever()
    finally:
        await server.close()


def main(argv=None):
    args = get_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level,
                        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')
    try:
        config = ServerConfig.from_args(args)
    except ValueError as err:
        logger.error("bad configuration: %s", err)
        return 2
    logger.info("starting %r", config)
    runner = uvloop.run if uvloop is not None else asyncio.run
    try:
        runner(serve(config))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == '__main__':
    sys.exit(main())
