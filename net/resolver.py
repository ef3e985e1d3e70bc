import socket

from nat.errors import ResolutionError


class SocketResolver:
    """IPv4 lookup through the system resolver."""

    def __init__(self, family: int = socket.AF_INET) -> None:
        self.family = family

    def resolve(self, host: str) -> str:
        try:
            infos = socket.getaddrinfo(host, None, self.family, socket.SOCK_DGRAM)
        except (socket.gaierror, UnicodeError) as e:
            raise ResolutionError(f"could not resolve {host!r}: {e}") from e
        if not infos:
            raise ResolutionError(f"no addresses for {host!r}")
        return infos[0][4][0]
