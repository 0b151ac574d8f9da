import unittest
from unittest.mock import Mock

from pasvftp.Config import ServerConfig
from pasvftp.Errors import Conflict
from pasvftp.FTPHandlers import FTPHandler, ChannelState
from pasvftp.Messages import RememberMe, ForgetMe, BusyChanged


class TestChannelRegistration(unittest.IsolatedAsyncioTestCase):
    """Session side of the data channel life cycle, without sockets."""

    def setUp(self):
        server = Mock()
        server.config = ServerConfig(root='/srv/ftp', connect_timeout=0.05)
        server.channels = {}
        self.server = server
        self.handler = FTPHandler('127.0.0.1', 40000, server, Mock(), Mock())

    def register(self, channel_id):
        self.handler._listening_id = channel_id
        self.server.channels[channel_id] = Mock(channel_id=channel_id)
        self.handler.on_message(RememberMe(channel_id))

    def test_starts_unregistered(self):
        self.assertIs(self.handler.channel_state, ChannelState.UNREGISTERED)
        self.assertIsNone(self.handler.data_channel)

    def test_remember_me_registers_idle(self):
        self.register(7)
        self.assertEqual(self.handler.data_channel_id, 7)
        self.assertIs(self.handler.channel_state, ChannelState.IDLE)
        self.assertIs(self.handler.data_channel, self.server.channels[7])

    def test_stale_remember_me_ignored(self):
        self.handler._listening_id = 8
        self.handler.on_message(RememberMe(3))
        self.assertIsNone(self.handler.data_channel_id)
        self.assertIs(self.handler.channel_state, ChannelState.UNREGISTERED)

    def test_busy_changes(self):
        self.register(7)
        self.handler.on_message(BusyChanged(7, True))
        self.assertIs(self.handler.channel_state, ChannelState.BUSY)
        self.handler.on_message(BusyChanged(7, False))
        self.assertIs(self.handler.channel_state, ChannelState.IDLE)

    def test_busy_from_other_channel_ignored(self):
        self.register(7)
        self.handler.on_message(BusyChanged(2, True))
        self.assertIs(self.handler.channel_state, ChannelState.IDLE)

    def test_forget_me_unregisters(self):
        self.register(7)
        self.handler.on_message(ForgetMe(7))
        self.assertIsNone(self.handler.data_channel_id)
        self.assertIs(self.handler.channel_state, ChannelState.UNREGISTERED)

    def test_forget_me_of_pending_listener(self):
        self.handler._listening_id = 9
        self.handler.on_message(ForgetMe(9))
        self.assertIsNone(self.handler._listening_id)

    async def test_idle_channel_required(self):
        with self.assertRaises(Conflict):
            await self.handler.get_idle_channel()
        self.register(7)
        self.assertIs(await self.handler.get_idle_channel(), self.server.channels[7])
        self.handler.on_message(BusyChanged(7, True))
        with self.assertRaises(Conflict):
            await self.handler.get_idle_channel()

    async def test_waits_for_registration_then_gives_up(self):
        self.handler._listening_id = 4
        with self.assertRaises(Conflict):
            await self.handler.get_idle_channel()

    def test_log_prefix(self):
        self.handler.username = 'TEST'
        self.assertEqual(self.handler.log_prefix, '127.0.0.1:40000-[TEST]')


if __name__ == '__main__':
    unittest.main()
