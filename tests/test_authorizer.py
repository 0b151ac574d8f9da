import unittest

from pasvftp.Authorizer import DummyAuthorizer
from pasvftp.Config import ServerConfig
from pasvftp.Errors import AuthenticationFailed


class TestDummyAuthorizer(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.authorizer = DummyAuthorizer.from_config(ServerConfig(username='joe', password='pw'))

    async def test_matching_pair(self):
        await self.authorizer.validate_authentication('joe', 'pw')

    async def test_wrong_values(self):
        for username, password in (('joe', 'PW'), ('Joe', 'pw'), ('', ''), ('joe', 'pw ')):
            with self.subTest(username=username, password=password):
                with self.assertRaises(AuthenticationFailed):
                    await self.authorizer.validate_authentication(username, password)

    async def test_checks_are_independent(self):
        await self.authorizer.validate_password('pw')
        with self.assertRaises(AuthenticationFailed):
            await self.authorizer.validate_username('bob')


if __name__ == '__main__':
    unittest.main()
