"""
CA host name resolution and reachability.

DnsResolver queries DNS with dnspython first and falls back to the
operating system resolver; ``probe_tcp`` attempts a bounded TCP connect.
Both are used only by the optional connectivity checks of the doctor.
"""

import ipaddress
import socket
from typing import Dict, Optional, Tuple

from dns.exception import DNSException
from dns.resolver import Resolver

from certpilot.lib.constants import TCP_PROBE_TIMEOUT
from certpilot.lib.logger import logging


class DnsResolver:
    """
    Resolves CA host names and remembers every successful answer.
    """

    def __init__(self) -> None:
        """Use the system nameservers over UDP until told otherwise."""
        self.resolver: Resolver = Resolver()
        self.use_tcp: bool = False
        self.mappings: Dict[str, str] = {}

    @staticmethod
    def create(ns: Optional[str] = None, dns_tcp: bool = False) -> "DnsResolver":
        """
        Build a resolver for the connectivity checks.

        Args:
            ns: Nameserver that overrides the system configuration
            dns_tcp: Query over TCP instead of UDP

        Returns:
            DnsResolver: The resolver
        """
        resolver = DnsResolver()

        if ns is not None:
            resolver.resolver.nameservers = [ns]

        resolver.use_tcp = dns_tcp

        return resolver

    def resolve(self, hostname: str) -> Optional[str]:
        """
        Return the first address for a CA host. IP literals pass through
        unchanged and earlier answers come from the cache.

        Returns:
            The address, or None when neither DNS nor the OS resolver answers
        """
        if hostname in self.mappings:
            logging.debug(
                f"Resolved {hostname!r} from cache: {self.mappings[hostname]}"
            )
            return self.mappings[hostname]

        if is_ip(hostname):
            return hostname

        ip_addr = None
        if self.resolver.nameservers:
            logging.debug(
                f"Trying to resolve {hostname!r} at {self.resolver.nameservers[0]!r}"
            )

        # Try DNS resolution first
        try:
            answers = self.resolver.resolve(hostname, tcp=self.use_tcp)
            if answers:
                ip_addr = str(answers[0])
        except DNSException as e:
            logging.debug(f"DNS resolution of {hostname!r} failed: {e}")

        # Fall back to socket resolution
        if ip_addr is None:
            logging.debug(f"Trying to resolve {hostname!r} locally")
            try:
                ip_addr = socket.gethostbyname(hostname)
            except OSError:
                ip_addr = None

        if ip_addr is None:
            logging.warning(f"Failed to resolve: {hostname}")
            return None

        self.mappings[hostname] = ip_addr
        return ip_addr


def is_ip(hostname: Optional[str]) -> bool:
    """
    Check if the given hostname is an IPv4 or IPv6 address.

    Args:
        hostname: The hostname to check

    Returns:
        bool: True if the hostname is an IP address, False otherwise
    """
    if hostname is None:
        return False

    try:
        ipaddress.ip_address(hostname)
        return True
    except ValueError:
        return False


def probe_tcp(
    host: str, port: int, timeout: float = TCP_PROBE_TIMEOUT
) -> Tuple[bool, Optional[str]]:
    """
    Attempt a TCP connection and close it immediately.

    Returns:
        Tuple of (reachable, error type name); the error type is "Timeout"
        when the connect did not finish in time
    """
    logging.debug(f"Connecting to {host}:{port} (timeout {timeout}s)")
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return True, None
    except socket.timeout:
        logging.debug(f"Connection to {host}:{port} timed out after {timeout}s")
        return False, "Timeout"
    except OSError as e:
        logging.debug(f"Connection to {host}:{port} failed: {e}")
        return False, type(e).__name__
