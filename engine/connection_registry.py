import socket
import threading
import logging

logger = logging.getLogger("FocusGate.Registry")


def _destroy(sock: socket.socket):
    # shutdown first so threads blocked in select/recv wake up
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass


class ConnectionRegistry:
    """
    Set of live sockets owned by one proxy engine.

    Holds plain references only; the handler that accepted (or opened) a
    socket closes it.  ``destroy_all`` exists so that a stop or restart
    can cut every connection without waiting for it to finish.  Once
    destroyed the registry stays closed: a socket registered afterwards
    (an upstream connect that completed late) is destroyed on the spot.
    """

    def __init__(self):
        self._sockets: set[socket.socket] = set()
        self._lock   = threading.Lock()
        self._closed = False

    def register(self, sock: socket.socket) -> bool:
        """Track *sock*.  Returns False (and destroys it) once closed."""
        with self._lock:
            if not self._closed:
                self._sockets.add(sock)
                return True
        _destroy(sock)
        return False

    def unregister(self, sock: socket.socket):
        with self._lock:
            self._sockets.discard(sock)

    def destroy_all(self) -> int:
        """Shut down and close every tracked socket; return how many."""
        with self._lock:
            self._closed = True
            sockets = list(self._sockets)
            self._sockets.clear()

        for sock in sockets:
            _destroy(sock)

        if sockets:
            logger.debug("Destroyed %d connection(s)", len(sockets))
        return len(sockets)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._lock:
            return len(self._sockets)

    def __contains__(self, sock) -> bool:
        with self._lock:
            return sock in self._sockets
