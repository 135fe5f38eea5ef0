"""Setup and teardown hooks usable from any run config.

    "setup": "loadgen.scenarios.probe:health_probe",
    "teardown": "loadgen.scenarios.probe:report_teardown"
"""

from __future__ import annotations

import os
import time
from typing import Any

import httpx

from loadgen.core.context import current
from loadgen.exceptions import SetupError
from loadgen.logger import session_logger as logger

HEALTH_PATH = os.environ.get("LOADGEN_HEALTH_PATH", "/health")


async def health_probe() -> dict[str, Any]:
    """Abort the run unless the target answers the health endpoint with 200."""
    http = current().http
    if http is None:
        raise SetupError("NO_HTTP_CLIENT", "health probe needs an HTTP client bound to the run")

    try:
        started = time.monotonic()
        response = await http.get(HEALTH_PATH)
    except httpx.HTTPError as exc:
        raise SetupError(
            "TARGET_UNREACHABLE",
            f"health check request failed: {exc}",
            {"path": HEALTH_PATH, "error_type": type(exc).__name__},
        ) from exc

    if response.status_code != 200:
        raise SetupError(
            "HEALTH_CHECK_FAILED",
            f"health check returned {response.status_code}",
            {"path": HEALTH_PATH, "status_code": response.status_code},
        )

    logger.info(
        "probe.healthy",
        event="probe.healthy",
        url=str(response.request.url),
        duration_ms=(time.monotonic() - started) * 1000.0,
    )
    return {"health_status": response.status_code}


def report_teardown(data: Any) -> None:
    logger.info("probe.teardown", event="probe.teardown", setup_data=data)
