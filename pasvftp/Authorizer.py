import hmac

from .Errors import AuthenticationFailed

__all__ = ['AbstractAuthorizer', 'DummyAuthorizer']


class AbstractAuthorizer:

    async def validate_username(self, username: str):
        """Raises AuthenticationFailed if username is unknown, else return None"""
        raise NotImplementedError

    async def validate_authentication(self, username: str, password: str):
        """
        Raises AuthenticationFailed if supplied username and password
        don't match, else return None
        """
        raise NotImplementedError

    async def validate_password(self, password: str):
        """Raises AuthenticationFailed if password matches no account."""
        raise NotImplementedError


class DummyAuthorizer(AbstractAuthorizer):
    """
    One fixed account taken from the server configuration.

    USER and PASS are checked independently of each other, so PASS with
    the right password answers success even after a wrong USER; only the
    pair of both marks a session authenticated.
    """

    def __init__(self, username: str, password: str):
        self.username = username
        self.password = password

    @classmethod
    def from_config(cls, config) -> 'DummyAuthorizer':
        return cls(config.username, config.password)

    def has_user(self, username: str) -> bool:
        return username == self.username

    async def validate_username(self, username: str):
        if not self.has_user(username):
            raise AuthenticationFailed("no such user %r" % username)

    async def validate_password(self, password: str):
        if not hmac.compare_digest(password.encode('utf8'), self.password.encode('utf8')):
            raise AuthenticationFailed("Authentication failed.")

    async def validate_authentication(self, username: str, password: str):
        await self.validate_username(username)
        await self.validate_password(password)
