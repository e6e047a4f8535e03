"""
Attempts to send a test event to check the herald configuration.

    herald-send-test-event [--timeout SECONDS]
"""

import argparse
import sys
from typing import Sequence, TextIO

from herald.client import Captured, Client, Excluded
from herald.configuration import AppConfig
from herald.dependency_injection import inject, injected
from herald.dsn import ParsedDsn
from herald.transport import TransmissionFailure


@inject
def send_test_event(
    timeout: float = 10.0,
    out: TextIO | None = None,
    config: AppConfig = injected,
    client: Client = injected,
) -> bool:
    if out is None:
        out = sys.stdout
    print("Client configuration:", file=out)
    if config.has_dsn:
        dsn = ParsedDsn.parse(config.HERALD_DSN)
        print(f"server: {dsn.endpoint_url}", file=out)
        print(f"public_key: {dsn.public_key}", file=out)
        print(f"secret_key: {dsn.secret_key}", file=out)
    else:
        print("server: <no HERALD_DSN configured>", file=out)
    print(f"included_environments: {config.HERALD_INCLUDED_ENVIRONMENTS!r}", file=out)
    print(f"current environment_name: {config.HERALD_ENVIRONMENT_NAME!r}", file=out)
    print(
        f"http pool size: {config.HERALD_HTTP_POOL_SIZE}, timeout: {config.HERALD_HTTP_TIMEOUT}\n",
        file=out,
    )

    if not config.is_environment_included:
        print(
            f"{config.HERALD_ENVIRONMENT_NAME!r} is not in {config.HERALD_INCLUDED_ENVIRONMENTS!r} "
            "so no test event will be sent",
            file=out,
        )
        return False

    print("Sending test event...", file=out)
    result = client.capture_exception(
        RuntimeError("Testing sending herald event"), event_source="test_event"
    )
    if isinstance(result, Excluded):
        print(f"Test event was excluded ({result.reason})", file=out)
        return False
    if not isinstance(result, Captured):
        print("Test event could not be built, nothing was sent", file=out)
        return False

    outcome = result.future.result(timeout=timeout)
    if isinstance(outcome, TransmissionFailure):
        print(f"Test event failed to send: {outcome.reason}", file=out)
        return False
    print(f"Test event sent! id: {outcome.id}", file=out)
    return True


def main(args: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument(
        "--timeout", type=float, default=10.0, help="Seconds to wait for the test event"
    )
    namespace = parser.parse_args(args)
    return 0 if send_test_event(timeout=namespace.timeout) else 1


if __name__ == "__main__":
    sys.exit(main())
