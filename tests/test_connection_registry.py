import socket
import unittest

from engine.connection_registry import ConnectionRegistry


class TestConnectionRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = ConnectionRegistry()
        self.a, self.b = socket.socketpair()

    def tearDown(self):
        self.a.close()
        self.b.close()

    def test_register_and_unregister(self):
        self.assertTrue(self.registry.register(self.a))
        self.assertIn(self.a, self.registry)
        self.assertEqual(len(self.registry), 1)

        self.registry.unregister(self.a)
        self.assertNotIn(self.a, self.registry)
        self.assertEqual(len(self.registry), 0)

    def test_unregister_unknown_socket_is_harmless(self):
        self.registry.unregister(self.a)
        self.assertEqual(len(self.registry), 0)

    def test_destroy_all_closes_and_clears(self):
        self.registry.register(self.a)
        self.assertEqual(self.registry.destroy_all(), 1)

        self.assertEqual(len(self.registry), 0)
        self.assertEqual(self.a.fileno(), -1)
        # the peer observes EOF
        self.b.settimeout(2)
        self.assertEqual(self.b.recv(16), b"")

    def test_register_after_destroy_closes_socket(self):
        self.registry.destroy_all()
        self.assertTrue(self.registry.closed)

        self.assertFalse(self.registry.register(self.a))
        self.assertEqual(self.a.fileno(), -1)
        self.assertEqual(len(self.registry), 0)


if __name__ == '__main__':
    unittest.main()
