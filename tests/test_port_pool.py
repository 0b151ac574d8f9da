import unittest

from pasvftp.Errors import NoAvailablePort
from pasvftp.PortPool import PortPool


class TestPortPool(unittest.TestCase):
    """Allocation and release of passive ports."""

    def setUp(self):
        self.ports = range(9001, 9006)
        self.pool = PortPool(self.ports)

    def test_allocate_all_then_exhausted(self):
        seen = {self.pool.allocate() for _ in self.ports}
        self.assertEqual(seen, set(self.ports))
        self.assertEqual(len(self.pool), 0)
        with self.assertRaises(NoAvailablePort):
            self.pool.allocate()

    def test_release_restores_free_set(self):
        taken = [self.pool.allocate() for _ in self.ports]
        for port in taken:
            self.pool.release(port)
        self.assertEqual(self.pool.free, frozenset(self.ports))
        self.assertIn(self.pool.allocate(), self.ports)

    def test_never_hands_out_outstanding_port(self):
        first = self.pool.allocate()
        others = [self.pool.allocate() for _ in range(len(self.ports) - 1)]
        self.assertNotIn(first, others)
        self.assertTrue(self.pool.is_allocated(first))

    def test_double_release_is_ignored(self):
        port = self.pool.allocate()
        self.pool.release(port)
        with self.assertLogs('pasvftp.PortPool', level='WARNING'):
            self.pool.release(port)
        self.assertEqual(len(self.pool), len(self.ports))

    def test_release_of_foreign_port_is_ignored(self):
        with self.assertLogs('pasvftp.PortPool', level='WARNING'):
            self.pool.release(1234)
        self.assertNotIn(1234, self.pool.free)

    def test_empty_pool_is_truthy(self):
        for _ in self.ports:
            self.pool.allocate()
        self.assertTrue(self.pool)


if __name__ == '__main__':
    unittest.main()
