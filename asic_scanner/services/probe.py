"""Cheap TCP reachability check run before full identification."""
import errno
import logging
import socket

from asic_scanner.models.device import ProbeResult

logger = logging.getLogger(__name__)

MINER_API_PORT = 4028

_TIMEOUT_ERRNOS = {errno.ETIMEDOUT, errno.EAGAIN, errno.EWOULDBLOCK}


class ReachabilityProbe:
    """TCP connect to the miner control port."""

    def __init__(self, port: int = MINER_API_PORT, timeout: float = 5.0):
        self.port = port
        self.timeout = timeout

    def probe(self, address: str) -> ProbeResult:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            result = sock.connect_ex((address, self.port))
        except socket.timeout:
            return ProbeResult.TIMED_OUT
        except OSError as e:
            logger.debug("Probe %s:%s failed: %s", address, self.port, e)
            return ProbeResult.UNREACHABLE
        finally:
            sock.close()

        if result == 0:
            return ProbeResult.REACHABLE
        if result in _TIMEOUT_ERRNOS:
            return ProbeResult.TIMED_OUT
        return ProbeResult.UNREACHABLE
