import asyncio
import unittest

from pasvftp import COMMAND_SUCCEED, COMMAND_FAILED
from pasvftp.Messages import Mailbox, ReceiveFile, SendFile, FileReceived, BusyChanged


class TestMailbox(unittest.IsolatedAsyncioTestCase):

    async def test_delivered_in_send_order(self):
        box = Mailbox()
        box.post(ReceiveFile('/a'))
        box.post(FileReceived())
        box.post(SendFile('/b'))
        kinds = []
        for _ in range(3):
            kinds.append(type(await box.get()))
            box.task_done()
        self.assertEqual(kinds, [ReceiveFile, FileReceived, SendFile])
        await box.join()

    async def test_request_gets_receiver_reply(self):
        box = Mailbox()

        async def receiver():
            message = await box.get()
            message.resolve(COMMAND_SUCCEED)
            box.task_done()

        task = asyncio.create_task(receiver())
        code = await box.request(FileReceived(), COMMAND_FAILED)
        await task
        self.assertEqual(code, COMMAND_SUCCEED)

    async def test_close_fails_pending_requests(self):
        box = Mailbox()
        request = asyncio.create_task(box.request(ReceiveFile('/a'), COMMAND_FAILED))
        await asyncio.sleep(0)
        box.close()
        self.assertEqual(await request, COMMAND_FAILED)
        self.assertEqual(len(box), 0)

    async def test_post_to_closed_mailbox(self):
        box = Mailbox()
        box.close()
        self.assertEqual(await box.request(FileReceived(), COMMAND_FAILED), COMMAND_FAILED)
        box.post(BusyChanged(1, True))
        self.assertEqual(len(box), 0)

    def test_repr(self):
        self.assertEqual(repr(BusyChanged(3, False)), 'BusyChanged(channel_id=3, busy=False)')
        self.assertEqual(repr(FileReceived()), 'FileReceived()')


if __name__ == '__main__':
    unittest.main()
