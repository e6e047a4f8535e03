import dataclasses
import logging
import time
from abc import ABC, abstractmethod

import requests
from pydantic import BaseModel
from requests.adapters import HTTPAdapter

from herald.configuration import AppConfig
from herald.dependency_injection import Module, injected
from herald.dsn import ParsedDsn
from herald.models import Event
from herald.utils import exception_formatter

logger = logging.getLogger(__name__)

module = Module()
module.enable()

transport_stub_module = Module()

PROTOCOL_VERSION = 5
CLIENT_NAME = "herald"
CLIENT_VERSION = "0.1.0"
AUTH_HEADER = "X-Sentry-Auth"


class TransmissionSuccess(BaseModel):
    id: str | None = None


class TransmissionFailure(BaseModel):
    reason: str
    status_code: int | None = None


TransmissionResult = TransmissionSuccess | TransmissionFailure


class Transport(ABC):
    @abstractmethod
    def send(self, event: Event) -> TransmissionResult:
        """
        Makes exactly one delivery attempt.  Failures are returned, not raised.
        """
        pass


@dataclasses.dataclass
class DummyTransport(Transport):
    """
    Records events instead of sending them.  Used for dry runs and swapped in for the HTTP
    transport by `transport_stub_module` in tests.
    """

    invocations: list[Event] = dataclasses.field(default_factory=list)

    # Use to force every send to fail with a given http status code
    force_failure_status: int | None = None
    dry_run: bool = False

    def send(self, event: Event) -> TransmissionResult:
        if self.dry_run:
            logger.info(f"Dry run, not sending event {event.event_id}")
        self.invocations.append(event)

        if self.force_failure_status:
            return TransmissionFailure(
                reason=f"HTTP {self.force_failure_status}", status_code=self.force_failure_status
            )
        return TransmissionSuccess(id=event.event_id)


class HttpTransport(Transport):
    def __init__(self, dsn: ParsedDsn, config: AppConfig):
        self.dsn = dsn
        self.timeout = config.HERALD_HTTP_TIMEOUT
        # Shared by every dispatch worker.
        self.session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=1, pool_maxsize=config.HERALD_HTTP_POOL_SIZE, max_retries=0
        )
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def authorization_header(self, timestamp: float | None = None) -> str:
        if timestamp is None:
            timestamp = time.time()
        fields = [
            f"sentry_version={PROTOCOL_VERSION}",
            f"sentry_client={CLIENT_NAME}/{CLIENT_VERSION}",
            f"sentry_timestamp={int(timestamp)}",
            f"sentry_key={self.dsn.public_key}",
        ]
        if self.dsn.secret_key:
            fields.append(f"sentry_secret={self.dsn.secret_key}")
        return "Sentry " + ", ".join(fields)

    def _prepare_request(self, event: Event) -> tuple[bytes, str, dict[str, str]]:
        body_bytes = event.to_json().encode("utf-8")
        headers = {
            "Content-Type": "application/json",
            "User-Agent": f"{CLIENT_NAME}/{CLIENT_VERSION}",
            AUTH_HEADER: self.authorization_header(),
        }
        return body_bytes, self.dsn.store_url, headers

    def send(self, event: Event) -> TransmissionResult:
        body_bytes, endpoint, headers = self._prepare_request(event)
        try:
            response = self.session.post(
                endpoint,
                data=body_bytes,
                headers=headers,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.RequestException as e:
            return TransmissionFailure(reason=exception_formatter(e))

        if not 200 <= response.status_code < 300:
            return TransmissionFailure(
                reason=f"HTTP {response.status_code} {response.reason or ''}".strip(),
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError:
            logger.warning(f"Event {event.event_id} accepted without a JSON body")
            return TransmissionSuccess(id=None)
        if isinstance(body, dict) and body.get("id") is not None:
            return TransmissionSuccess(id=str(body["id"]))
        return TransmissionSuccess(id=None)


@module.provider
def get_transport(config: AppConfig = injected) -> Transport:
    if config.HERALD_DRY_RUN or not config.has_dsn:
        return DummyTransport(dry_run=True)
    return HttpTransport(ParsedDsn.parse(config.HERALD_DSN), config)


# Both type names resolve to the same recording instance, so tests can inspect what was sent.
@transport_stub_module.provider
def get_dummy_transport() -> DummyTransport:
    return DummyTransport()


@transport_stub_module.provider
def get_stub_transport(dummy_transport: DummyTransport = injected) -> Transport:
    return dummy_transport
