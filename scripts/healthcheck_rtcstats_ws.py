#!/usr/bin/env python3
"""Health check script for the rtcstats server WebSocket endpoint."""
import asyncio
import json
import os
import socket
import sys
import uuid

try:
    import websockets
except ImportError:
    print("ERROR: websockets not installed. Run: pip install websockets")
    sys.exit(1)


async def check_rtcstats_ws(url):
    """Open a session on the rtcstats server with the agent's sub-protocol, then close it."""
    protocol = os.getenv("RTCSTATS_PROTOCOL", "3.1_JVB")
    display_name = os.getenv("RTCSTATS_DISPLAY_NAME", socket.gethostname())
    session_id = str(uuid.uuid4())

    try:
        print(f"Connecting to: {url} (protocol={protocol}, origin={display_name})")
        async with websockets.connect(url, subprotocols=[protocol], origin=display_name, open_timeout=10) as ws:
            print(f"✓ CONNECTED to rtcstats server, negotiated protocol={ws.subprotocol}")

            identity = {
                "type": "identity",
                "statsSessionId": session_id,
                "data": {
                    "confName": "healthcheck",
                    "displayName": display_name,
                    "meetingUniqueId": session_id,
                    "applicationName": "JVB",
                    "endpoints": [],
                },
            }
            await ws.send(json.dumps(identity))
            print(f"✓ Sent identity for session {session_id}")

            await ws.send(json.dumps({"type": "stats-entry", "statsSessionId": session_id, "data": "{}"}))
            await ws.send(json.dumps({"type": "close", "statsSessionId": session_id}))
            print("✓ Sent stats-entry and close")

            try:
                msg = await asyncio.wait_for(ws.recv(), timeout=2.0)
                print(f"✓ Received: {str(msg)[:100]}")
            except asyncio.TimeoutError:
                print("⚠ No response (rtcstats server does not have to answer)")

            print("✓ rtcstats WebSocket health check PASSED")
            return 0
    except Exception as e:
        print(f"✗ Connection failed: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("RTCSTATS_SERVER", "ws://localhost:3000")
    exit_code = asyncio.run(check_rtcstats_ws(url))
    sys.exit(exit_code)
