"""Readiness checks for started nodes.

ReadinessGate blocks until a set of named predicates holds, e.g. "ports
files exist". HttpWaiter is the HTTP-level check tests run afterwards; the
node only hands it TLS hints derived from its settings.
"""

import logging
import time
from pathlib import Path
from typing import Callable, Mapping, Optional

import requests
import urllib3

from testclusters.common import wait_until
from testclusters.errors import ProcessDied, ReadinessTimeout, TestClustersError

# Suppress SSL warnings for self-signed test certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

NODE_UP_TIMEOUT = 2 * 60  # seconds
ADDITIONAL_CONFIG_TIMEOUT = 15  # seconds per unit of setup work
PORTS_FILE_BACKOFF = 0.5  # seconds


def readiness_timeout(setup_work_units: int) -> float:
    """Deadline for a node: base window plus time for configured setup work.

    Plugins, secret store entries and users are installed at configuration
    time and loaded when the node boots, so they eat into the same budget.
    """
    return NODE_UP_TIMEOUT + ADDITIONAL_CONFIG_TIMEOUT * setup_work_units


class ReadinessGate:
    """Waits for ordered, named conditions under a single deadline."""

    def __init__(
        self,
        description: str,
        is_alive: Optional[Callable[[], bool]] = None,
        poll_interval: float = 0.1,
    ):
        """Initialize the gate.

        Args:
            description: What is being waited for, used in messages
            is_alive: Optional liveness check; the wait fails fast when it
                returns False while a condition is still unmet
            poll_interval: Seconds between unmet checks
        """
        self.description = description
        self.is_alive = is_alive
        self.poll_interval = poll_interval

    def wait_for(
        self,
        conditions: Mapping[str, Callable[[], bool]],
        timeout: float,
        started_at: Optional[float] = None,
    ) -> None:
        """Block until every condition holds, checking them in order.

        Raises:
            ReadinessTimeout: If a condition is still unmet at the deadline
            ProcessDied: If the process exits while waiting
        """
        if started_at is None:
            started_at = time.monotonic()

        for name, predicate in conditions.items():
            condition_started = time.monotonic()
            last_error: Optional[Exception] = None
            met = False
            while time.monotonic() - started_at < timeout:
                if self.is_alive is not None and not self.is_alive():
                    raise ProcessDied(
                        f"process was found dead while waiting for {name}, {self.description}"
                    )
                try:
                    if predicate():
                        met = True
                        break
                except TestClustersError:
                    raise
                except Exception as e:
                    last_error = e
                time.sleep(self.poll_interval)

            if not met:
                message = f"`{self.description}` failed to wait for {name} after {timeout} seconds"
                if last_error is not None:
                    raise ReadinessTimeout(name, f"{message}, last error: {last_error}") from last_error
                raise ReadinessTimeout(name, message)

            logger.info(
                "%s: %s took %.1f seconds",
                self.description, name, time.monotonic() - condition_started,
            )


def files_exist_with_delay(*files: Path, delay: float = PORTS_FILE_BACKOFF) -> bool:
    """Check that all files exist, retrying once after a short delay."""
    if all(f.exists() for f in files):
        return True
    time.sleep(delay)
    return all(f.exists() for f in files)


class HttpWaiter:
    """Polls an HTTP endpoint until it answers 200."""

    def __init__(
        self,
        username: Optional[str] = None,
        password: Optional[str] = None,
        interval: float = 0.5,
        request_timeout: float = 5.0,
    ):
        self.username = username
        self.password = password
        self.interval = interval
        self.request_timeout = request_timeout
        self.certificate_authorities: Optional[Path] = None
        self.trust_store: Optional[Path] = None
        self.trust_store_password: Optional[str] = None

    def configure(
        self,
        certificate_authorities: Optional[Path] = None,
        trust_store: Optional[Path] = None,
        trust_store_password: Optional[str] = None,
    ) -> None:
        """Take TLS hints from the node's settings.

        A PEM CA bundle is used to verify the server certificate. requests
        can't read JKS/PKCS12 trust stores, so a trust store without a CA
        bundle only turns verification off; trust_store_password is kept for
        callers that hand the store to another client.
        """
        if certificate_authorities is not None:
            self.certificate_authorities = Path(certificate_authorities)
        if trust_store is not None:
            self.trust_store = Path(trust_store)
        if trust_store_password is not None:
            self.trust_store_password = trust_store_password

    def _verify(self):
        if self.certificate_authorities is not None:
            return str(self.certificate_authorities)
        if self.trust_store is not None:
            # requests can't read keystore trust stores
            logger.debug("Trust store %s configured, skipping certificate verification", self.trust_store)
        return False

    def check(self, url: str) -> tuple[bool, str]:
        """Make a single request.

        Returns:
            (success, message) tuple
        """
        auth = (self.username, self.password) if self.username else None
        try:
            resp = requests.get(url, auth=auth, verify=self._verify(), timeout=self.request_timeout)
        except requests.exceptions.Timeout:
            return False, f"Timeout connecting to {url}"
        except requests.exceptions.RequestException as e:
            return False, f"Cannot connect to {url}: {e}"

        if resp.status_code == 200:
            return True, f"{url} is up"
        return False, f"Unexpected response from {url}: {resp.status_code}"

    def wait_for(self, url: str, timeout: float) -> bool:
        """Wait until url answers 200 or timeout seconds pass."""
        logger.info("Waiting for %s...", url)
        last = ['']

        def _up() -> bool:
            ok, last[0] = self.check(url)
            return ok

        if wait_until(_up, timeout, self.interval):
            return True
        logger.error("Timeout waiting for %s: %s", url, last[0])
        return False
