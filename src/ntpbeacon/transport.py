"""UDP transport and endpoint resolution for NTP exchanges."""

import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional, Tuple

from .errors import NetworkError, NTPTimeoutError

logger = logging.getLogger(__name__)

NTP_PORT = 123
RECEIVE_BUFFER_SIZE = 1024

Address = Tuple[str, int]


@dataclass(frozen=True)
class Endpoint:
    """Resolved NTP server address plus the response timeout in seconds."""
    host: str
    address: Address
    timeout: float
    port: int = NTP_PORT

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError(f"Endpoint timeout must be > 0, got {self.timeout}")

    @classmethod
    def resolve(cls, host: str, port: int = NTP_PORT, timeout: float = 2.0) -> "Endpoint":
        """Resolve host to an IPv4 UDP address."""
        try:
            infos = socket.getaddrinfo(host, port, socket.AF_INET, socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as e:
            raise NetworkError(f"Unable to resolve NTP server {host}:{port}: {e}") from e

        if not infos:
            raise NetworkError(f"No address found for NTP server {host}:{port}")

        ip, resolved_port = infos[0][4][:2]
        return cls(host=host, address=(ip, resolved_port), timeout=timeout, port=port)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class Transport(ABC):
    """Datagram capability used by the exchange engine."""

    @abstractmethod
    def send(self, data: bytes, address: Address) -> None:
        """Send one datagram; raise NetworkError on failure."""
        pass

    @abstractmethod
    def receive(self, timeout: float) -> Tuple[bytes, Address]:
        """Wait up to timeout seconds for one datagram.

        Raises NTPTimeoutError when nothing arrives in time and
        NetworkError on any other socket failure.
        """
        pass

    def close(self) -> None:
        pass


@dataclass
class UDPTransport(Transport):
    """UDP socket bound to a fixed local address for receiving replies."""
    bind_address: str = "0.0.0.0"
    bind_port: int = 7777
    _sock: Optional[socket.socket] = field(default=None, init=False, repr=False)

    def open(self) -> "UDPTransport":
        if self._sock is not None:
            return self

        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.bind_address, self.bind_port))
        except OSError as e:
            sock.close()
            raise NetworkError(
                f"Unable to bind UDP socket on {self.bind_address}:{self.bind_port}: {e}"
            ) from e

        self._sock = sock
        logger.info(f"UDP transport bound to {self.local_address[0]}:{self.local_address[1]}")
        return self

    @property
    def local_address(self) -> Address:
        if self._sock is None:
            raise NetworkError("UDP transport is not open")
        return self._sock.getsockname()[:2]

    def send(self, data: bytes, address: Address) -> None:
        sock = self._require_socket()
        try:
            sock.sendto(data, address)
        except OSError as e:
            raise NetworkError(f"Failed to send NTP request to {address[0]}:{address[1]}: {e}") from e

    def receive(self, timeout: float) -> Tuple[bytes, Address]:
        sock = self._require_socket()
        try:
            sock.settimeout(timeout)
            data, address = sock.recvfrom(RECEIVE_BUFFER_SIZE)
        except socket.timeout as e:
            raise NTPTimeoutError(f"No NTP response within {timeout}s") from e
        except OSError as e:
            raise NetworkError(f"Failed to receive NTP response: {e}") from e
        return data, address[:2]

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.info("UDP transport closed")

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            self.open()
        return self._sock

    def __enter__(self) -> "UDPTransport":
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
