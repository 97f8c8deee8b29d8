#!/usr/bin/env python3
"""Health check script for the JVB stats REST endpoint: fetch once and list reportable conferences."""
import asyncio
import os
import sys

from jvb_rtcstats_push import JvbStatsClient, build_stats_url, endpoint_stats_ids, reportable_conferences


async def check_jvb_stats(url):
    client = JvbStatsClient(url)
    try:
        print(f"Fetching: {url}")
        document = await client.fetch()
        if document is None:
            print("✗ Could not fetch stats document")
            return 1

        conferences = reportable_conferences(document)
        if conferences is None:
            print(f"✗ Malformed stats document: {str(document)[:200]}")
            return 1

        total = len(document.get("conferences", {}))
        print(f"✓ time={document.get('time')} conferences={total} reportable={len(conferences)}")
        for conf_id, conf in conferences.items():
            print(
                f"  {conf_id}: name={conf.get('name')} meeting_id={conf.get('meeting_id')} "
                f"endpoints={sorted(endpoint_stats_ids(conf))}"
            )
        print("✓ JVB stats health check PASSED")
        return 0
    finally:
        await client.close()


if __name__ == "__main__":
    address = sys.argv[1] if len(sys.argv) > 1 else os.getenv("JVB_ADDRESS", "http://127.0.0.1:8080/debug")
    path = os.getenv("JVB_STATS_PATH", "stats")
    exit_code = asyncio.run(check_jvb_stats(build_stats_url(address, path)))
    sys.exit(exit_code)
