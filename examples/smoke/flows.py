"""Two read-only flows for a quick smoke run against any service exposing
/ready and /v1/indexes.  Referenced from run.json next to this file.
"""

from __future__ import annotations

import time

from loadgen import Trend, check, current

ready_duration = Trend("ready_duration")


async def readiness():
    started = time.monotonic()
    response = await current().http.get("/ready", tags={"flow": "readiness"})
    if check(response, {"ready is 200": lambda r: r.status_code == 200}):
        ready_duration.add((time.monotonic() - started) * 1000.0)


async def list_indexes():
    response = await current().http.get("/v1/indexes", tags={"flow": "list_indexes"})
    check(
        response,
        {
            "indexes status is 200": lambda r: r.status_code == 200,
            "indexes body is json": lambda r: isinstance(r.json(), (list, dict)),
        },
    )
