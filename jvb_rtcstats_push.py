"""
JVB rtcstats push - Polls a Jitsi Videobridge status endpoint and streams conference stats to rtcstats.

PROTOCOL SUMMARY
================
Bridge REST endpoint (HTTP GET <jvb-address>/<jvb-stats-path>):
- {"time": <epoch-ms>, "conferences": {<confId>: {"name", "meeting_id"?, "rtcstatsEnabled"?,
  "endpoints": {<epId>: {"statsId", ...}}, ...stats}}}
- Conferences without a name, or with rtcstatsEnabled=false, are not reported

rtcstats collector WebSocket (JSON text frames, sub-protocol RTCSTATS_PROTOCOL, origin=display name):
- {"type": "identity", "statsSessionId", "data": {confName, displayName, meetingUniqueId, applicationName, endpoints}}
- {"type": "close", "statsSessionId"}
- {"type": "stats-entry", "statsSessionId", "data": "<json diff against previous tick>"}
- {"type": "stats-entry", "statsSessionId", "data": "<json [\"logs\", null, [{text, count}], epoch-ms]>"}

Delivery is best effort: messages sent while the collector link is down are dropped, never queued.

JVB log file (optional):
- New records start with "JVB " and carry a bracketed "meeting_id=<prefix>" attribute
- Lines without the marker continue the previous record
"""
import argparse
import asyncio
import json
import logging
import os
import signal
import socket
import sys
import time
import uuid
from enum import Enum

import aiohttp
import websockets
import websockets.exceptions
from dotenv import load_dotenv

# ========== LOGGING SETUP ==========
LOG_LEVEL = os.getenv("RTCSTATS_LOG_LEVEL", "INFO").upper()
logger = logging.getLogger('jvb_rtcstats_push')


def setup_logging(debug: bool = False):
    """Configure root logging once for the process."""
    level = logging.DEBUG if debug else getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format='[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout
    )
    # websockets logs every ping at DEBUG
    logging.getLogger('websockets').setLevel(logging.INFO)


# ========== CONFIGURATION ==========
JVB_ADDRESS = os.getenv("JVB_ADDRESS")
JVB_STATS_PATH = os.getenv("JVB_STATS_PATH", "stats")
RTCSTATS_SERVER = os.getenv("RTCSTATS_SERVER")
JVB_LOG_FILE = os.getenv("JVB_LOG_FILE")
DISPLAY_NAME = os.getenv("RTCSTATS_DISPLAY_NAME", socket.gethostname())
RTCSTATS_PROTOCOL = os.getenv("RTCSTATS_PROTOCOL", "3.1_JVB")
APPLICATION_NAME = "JVB"

# Timing
POLL_INTERVAL_SECS = float(os.getenv("POLL_INTERVAL_SECS", "5.0"))
FETCH_TIMEOUT_SECS = float(os.getenv("FETCH_TIMEOUT_SECS", "4.0"))
RECONNECT_DELAY_SECS = float(os.getenv("RECONNECT_DELAY_SECS", "5.0"))
PING_INTERVAL_SECS = float(os.getenv("PING_INTERVAL_SECS", "20.0"))
PING_TIMEOUT_SECS = float(os.getenv("PING_TIMEOUT_SECS", "10.0"))
LOG_RETENTION_SECS = float(os.getenv("LOG_RETENTION_SECS", "60.0"))  # Retain up to 1 minute of logs
LOG_TAIL_POLL_SECS = float(os.getenv("LOG_TAIL_POLL_SECS", "0.5"))
LOG_TAIL_CHUNK_BYTES = 65536
FIRST_CONNECT_WAIT_SECS = float(os.getenv("FIRST_CONNECT_WAIT_SECS", "10.0"))

LOG_RECORD_MARKER = "JVB "
MEETING_ID_ATTR = "meeting_id="


def epoch_ms() -> int:
    return int(time.time() * 1000)


# ========== DIFF ENGINE ==========
def _values_equal(a, b) -> bool:
    """JSON value equality: bools never equal numbers, lists compare element-wise."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_values_equal(a[k], b[k]) for k in a)
    return a == b


def diff_snapshots(previous: dict, current: dict) -> dict:
    """Return the keys of current whose values differ from previous, nested as in current.

    Keys that disappeared since previous are not reported.
    """
    delta = {}
    for key, value in current.items():
        if key not in previous:
            delta[key] = value
            continue
        old = previous[key]
        if isinstance(value, dict) and isinstance(old, dict):
            nested = diff_snapshots(old, value)
            if nested:
                delta[key] = nested
        elif not _values_equal(old, value):
            delta[key] = value
    return delta


# ========== SESSION REGISTRY ==========
class RegistryContractError(RuntimeError):
    """Raised when a conference is addressed before it was reconciled."""


class SessionState:
    """State this agent keeps for one live bridge conference."""

    def __init__(self, conf_id: str, conf_name: str, meeting_unique_id: str,
                 display_name: str, application_name: str = APPLICATION_NAME):
        self.conf_id = conf_id
        self.session_id = str(uuid.uuid4())
        self.conf_name = conf_name
        self.display_name = display_name
        self.meeting_unique_id = meeting_unique_id or conf_id
        self.application_name = application_name
        self.known_endpoints = set()
        self.previous_snapshot = None
        self.created_at = time.monotonic()

    def identity_data(self) -> dict:
        return {
            "confName": self.conf_name,
            "displayName": self.display_name,
            "meetingUniqueId": self.meeting_unique_id,
            "applicationName": self.application_name,
            "endpoints": sorted(self.known_endpoints),
        }


class SessionRegistry:
    """Tracks one SessionState per reportable bridge conference id."""

    def __init__(self, display_name: str = DISPLAY_NAME, application_name: str = APPLICATION_NAME):
        self.display_name = display_name
        self.application_name = application_name
        self._sessions = {}

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, conf_id):
        return conf_id in self._sessions

    def conference_ids(self):
        return list(self._sessions)

    def get(self, conf_id: str) -> SessionState:
        state = self._sessions.get(conf_id)
        if state is None:
            raise RegistryContractError(f"conference {conf_id!r} is not tracked; reconcile first")
        return state

    def reconcile(self, current_conferences: dict):
        """Create sessions for new conference ids and drop sessions for vanished ones.

        current_conferences maps conference id to its bridge document. Returns
        (created, removed): a list of new conference ids and a dict of removed
        conference id to its final SessionState.
        """
        created = []
        for conf_id, conf in current_conferences.items():
            if conf_id in self._sessions:
                continue
            state = SessionState(
                conf_id,
                conf.get("name"),
                conf.get("meeting_id"),
                self.display_name,
                self.application_name,
            )
            self._sessions[conf_id] = state
            created.append(conf_id)
            logger.info(f"SESSION_START: conf={conf_id} name={state.conf_name} session={state.session_id}")

        removed = {}
        for conf_id in [c for c in self._sessions if c not in current_conferences]:
            state = self._sessions.pop(conf_id)
            removed[conf_id] = state
            logger.info(
                f"SESSION_END: conf={conf_id} session={state.session_id} "
                f"endpoints={len(state.known_endpoints)} "
                f"lifetime={time.monotonic() - state.created_at:.1f}s"
            )
        return created, removed

    def update_endpoints(self, conf_id: str, current_stats_ids) -> set:
        """Add unseen stats ids to the conference roster and return the newly added ones."""
        state = self.get(conf_id)
        added = set(current_stats_ids) - state.known_endpoints
        if added:
            state.known_endpoints |= added
            logger.debug(f"Roster grew: conf={conf_id} added={sorted(added)}")
        return added

    def record_snapshot(self, conf_id: str, data: dict):
        """Replace the diff baseline for a conference and return the previous one."""
        state = self.get(conf_id)
        previous = state.previous_snapshot
        state.previous_snapshot = data
        return previous


# ========== LOG CORRELATOR ==========
class LogBucket:
    def __init__(self, meeting_id: str, now: float):
        self.meeting_id = meeting_id
        self.lines = []
        self.last_access = now


class LogCorrelator:
    """Buffers JVB log lines by (truncated) meeting id until a stats tick collects them."""

    def __init__(self, retention_secs: float = LOG_RETENTION_SECS, clock=time.monotonic):
        self.retention_secs = retention_secs
        self.clock = clock
        self.current_meeting_id = None
        self._buckets = {}

    def __len__(self):
        return len(self._buckets)

    def meeting_id_for(self, line: str):
        """Resolve the meeting id of a line, updating the current record on marker lines."""
        if not line.startswith(LOG_RECORD_MARKER):
            # Continuation of a multi-line record
            return self.current_meeting_id

        attrs = line.replace('[', '').replace(']', '').split(' ')
        meeting_id = next((a[len(MEETING_ID_ATTR):] for a in attrs if a.startswith(MEETING_ID_ATTR)), None)
        self.current_meeting_id = meeting_id
        return meeting_id

    def append(self, line: str) -> bool:
        """Buffer a line under its meeting id; returns False when the line belongs to no meeting."""
        line = line.rstrip('\r\n')
        meeting_id = self.meeting_id_for(line)
        if meeting_id is None:
            return False

        now = self.clock()
        bucket = self._buckets.get(meeting_id)
        if bucket is None:
            bucket = LogBucket(meeting_id, now)
            self._buckets[meeting_id] = bucket
        bucket.lines.append(line)
        bucket.last_access = now

        self.clean(now)
        return True

    def clean(self, now: float = None):
        """Drop buckets that have not been appended to within the retention window."""
        if now is None:
            now = self.clock()
        for meeting_id in [m for m, b in self._buckets.items() if now - b.last_access > self.retention_secs]:
            logger.info(f"Remove stale logs {meeting_id}")
            del self._buckets[meeting_id]

    def take(self, full_meeting_id: str) -> list:
        """Return and clear the lines of the first bucket whose key prefixes full_meeting_id.

        The JVB log only carries the first part of the meeting id, so this is a
        prefix match; a collision between two prefixes returns the first bucket.
        """
        self.clean()
        for meeting_id, bucket in self._buckets.items():
            if full_meeting_id.startswith(meeting_id):
                lines = bucket.lines
                bucket.lines = []
                return lines
        return []


class JvbLogTail:
    """Follows a log file from its end and feeds complete lines to a LogCorrelator."""

    def __init__(self, path: str, correlator: LogCorrelator, poll_interval: float = LOG_TAIL_POLL_SECS):
        self.path = path
        self.correlator = correlator
        self.poll_interval = poll_interval
        self.enabled = True
        self.lines_read = 0
        self._stopping = asyncio.Event()
        self._partial = b""

    def stop(self):
        self._stopping.set()

    def _feed(self, chunk: bytes):
        lines = (self._partial + chunk).split(b'\n')
        self._partial = lines.pop()
        for line in lines:
            self.lines_read += 1
            self.correlator.append(line.decode("utf-8", errors="replace"))

    async def _wait(self):
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def _follow(self, f):
        """Read f until stopped or until the path points at a different file."""
        inode = os.fstat(f.fileno()).st_ino
        while not self._stopping.is_set():
            chunk = f.read(LOG_TAIL_CHUNK_BYTES)
            if chunk:
                self._feed(chunk)
                await asyncio.sleep(0)
                continue
            try:
                stat = os.stat(self.path)
            except FileNotFoundError:
                # renamed away, replacement not created yet
                await self._wait()
                continue
            if stat.st_ino != inode:
                logger.warning(f"Log file {self.path} rotated, reopening")
                # lines written to the old file after the last read
                for chunk in iter(lambda: f.read(LOG_TAIL_CHUNK_BYTES), b""):
                    self._feed(chunk)
                if self._partial:
                    self._feed(b"\n")
                return
            if stat.st_size < f.tell():
                logger.warning(f"Log file {self.path} truncated, reading from start")
                f.seek(0)
                self._partial = b""
                continue
            await self._wait()

    async def run(self):
        """Tail until stopped; a rotated file is reopened from its start, read errors disable tailing for good."""
        from_end = True
        try:
            while not self._stopping.is_set():
                with open(self.path, "rb") as f:
                    if from_end:
                        f.seek(0, os.SEEK_END)
                        from_end = False
                    logger.info(f"LOG_TAIL_START: {self.path} offset={f.tell()}")
                    await self._follow(f)
        except OSError as e:
            self.enabled = False
            logger.error(f"LOG_TAIL_STOPPED: error reading from the log file {self.path}: {e}")


# ========== TRANSPORT ==========
class TransportState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class RtcstatsTransport:
    """Single auto-reconnecting WebSocket link to the rtcstats collector.

    State machine: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED -> CONNECTING ...
    A failed handshake stays in CONNECTING and retries after reconnect_delay; a
    closed or errored channel goes to DISCONNECTED and reconnects after the same
    delay. Liveness is checked with protocol pings every ping_interval.
    """

    def __init__(self, url: str, protocol: str = RTCSTATS_PROTOCOL, identity: str = DISPLAY_NAME,
                 reconnect_delay: float = RECONNECT_DELAY_SECS, ping_interval: float = PING_INTERVAL_SECS,
                 ping_timeout: float = PING_TIMEOUT_SECS, connector=None):
        self.url = url
        self.protocol = protocol
        self.identity = identity
        self.reconnect_delay = reconnect_delay
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self.connector = connector or websockets.connect
        self.state = TransportState.DISCONNECTED
        self.connect_attempts = 0
        self.sent_count = 0
        self.dropped_count = 0
        self._ws = None
        self._task = None
        self._stopping = asyncio.Event()
        self._connected_event = asyncio.Event()

    @property
    def connected(self) -> bool:
        return self.state is TransportState.CONNECTED and self._ws is not None

    def start(self):
        """Spawn the connection supervisor on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(run_task("transport", self.run()))
        return self._task

    async def wait_connected(self, timeout: float = None):
        await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)

    async def _sleep(self, delay: float):
        """Sleep for delay unless stop() is called first."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def connect(self):
        """One handshake attempt; returns the channel or raises."""
        self.state = TransportState.CONNECTING
        self.connect_attempts += 1
        logger.info(f"Connecting to rtcstats server {self.url} (attempt {self.connect_attempts})")
        return await self.connector(
            self.url,
            subprotocols=[self.protocol],
            origin=self.identity,
            ping_interval=self.ping_interval,
            ping_timeout=self.ping_timeout,
            close_timeout=2,
            open_timeout=10,
        )

    async def run(self):
        """Keep one channel open for as long as the transport is not stopped."""
        while not self._stopping.is_set():
            try:
                ws = await self.connect()
            except Exception as e:
                logger.warning(
                    f"TRANSPORT_CONNECT_FAILED: {self.url}: {e!r}, retrying in {self.reconnect_delay}s"
                )
                await self._sleep(self.reconnect_delay)
                continue

            if self._stopping.is_set():
                await ws.close()
                break

            self._ws = ws
            self.state = TransportState.CONNECTED
            self._connected_event.set()
            logger.info(f"TRANSPORT_CONNECTED: {self.url} protocol={self.protocol}")

            await self._drain(ws)

            self._ws = None
            self._connected_event.clear()
            self.state = TransportState.DISCONNECTED
            if self._stopping.is_set():
                break
            logger.warning(f"TRANSPORT_CLOSED: {self.url}, reconnecting in {self.reconnect_delay}s")
            await self._sleep(self.reconnect_delay)

    async def _drain(self, ws):
        """Consume collector frames until the channel closes."""
        try:
            async for message in ws:
                logger.debug(f"Collector message: {str(message)[:200]}")
        except websockets.exceptions.ConnectionClosedOK:
            pass
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(f"Collector connection error: code={e.code} reason={e.reason}")
        except Exception as e:
            logger.error(f"Collector channel error: {e}", exc_info=True)

    async def send(self, message: dict) -> bool:
        """Serialize and send a message; returns False when it was dropped."""
        ws = self._ws
        if not self.connected or ws is None:
            self.dropped_count += 1
            logger.debug(f"Dropping {message.get('type')} message: not connected")
            return False
        try:
            await ws.send(json.dumps(message))
        except websockets.exceptions.ConnectionClosed as e:
            self.dropped_count += 1
            logger.warning(f"Send failed, channel closed: {e}")
            return False
        except Exception as e:
            self.dropped_count += 1
            logger.error(f"Send failed: {e!r}")
            return False
        self.sent_count += 1
        return True

    async def stop(self):
        self._stopping.set()
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing collector channel: {e}")
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5)
            except (asyncio.TimeoutError, asyncio.CancelledError):
                self._task.cancel()


# ========== BRIDGE CLIENT ==========
def build_stats_url(address: str, path: str) -> str:
    return f"{address.rstrip('/')}/{path.lstrip('/')}"


class JvbStatsClient:
    """Fetches the bridge status document over HTTP."""

    def __init__(self, url: str, timeout: float = FETCH_TIMEOUT_SECS):
        self.url = url
        self.timeout = timeout
        self._session = None

    async def fetch(self):
        """Return the decoded JSON document, or None if it could not be retrieved."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
        try:
            async with self._session.get(self.url) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning(f"FETCH_FAILED: {self.url}: {e!r}")
            return None

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None


def reportable_conferences(document) -> dict:
    """Pick the conferences to report from a bridge document; None if the document is malformed."""
    if not isinstance(document, dict):
        return None
    conferences = document.get("conferences")
    if not isinstance(conferences, dict):
        return None
    return {
        conf_id: conf for conf_id, conf in conferences.items()
        if isinstance(conf, dict) and conf.get("name") and conf.get("rtcstatsEnabled", True) is not False
    }


def endpoint_stats_ids(conf: dict) -> set:
    endpoints = conf.get("endpoints")
    if not isinstance(endpoints, dict):
        return set()
    return {ep["statsId"] for ep in endpoints.values() if isinstance(ep, dict) and ep.get("statsId")}


# ========== MESSAGES ==========
def identity_message(state: SessionState) -> dict:
    return {"type": "identity", "statsSessionId": state.session_id, "data": state.identity_data()}


def close_message(state: SessionState) -> dict:
    return {"type": "close", "statsSessionId": state.session_id}


def stats_entry_message(state: SessionState, delta: dict) -> dict:
    return {"type": "stats-entry", "statsSessionId": state.session_id, "data": json.dumps(delta)}


def logs_entry_message(state: SessionState, lines: list, timestamp: int = None) -> dict:
    entries = [{"text": line, "count": 1} for line in lines]
    payload = ["logs", None, entries, timestamp if timestamp is not None else epoch_ms()]
    return {"type": "stats-entry", "statsSessionId": state.session_id, "data": json.dumps(payload)}


# ========== TASK WRAPPER WITH EXCEPTION LOGGING ==========
async def run_task(name: str, coro):
    """Run async task with full lifecycle logging (start/exit/exception)."""
    logger.info(f"TASK_START: {name}")
    try:
        await coro
        logger.info(f"TASK_EXIT: {name} (normal)")
    except asyncio.CancelledError:
        logger.info(f"TASK_CANCEL: {name}")
        raise
    except Exception as e:
        logger.error(f"TASK_EXCEPTION: {name}: {e}", exc_info=True)
        raise


# ========== POLL CYCLE ==========
class RtcstatsPushAgent:
    """Turns periodic bridge documents into the rtcstats message stream."""

    def __init__(self, fetch, transport, registry: SessionRegistry = None,
                 log_correlator: LogCorrelator = None, poll_interval: float = POLL_INTERVAL_SECS):
        self.fetch = fetch
        self.transport = transport
        self.registry = registry if registry is not None else SessionRegistry()
        self.log_correlator = log_correlator
        self.poll_interval = poll_interval
        self.ticks = 0
        self.skipped_ticks = 0
        self._stopping = asyncio.Event()

    def stop(self):
        self._stopping.set()

    async def tick(self) -> bool:
        """Fetch once and process; returns False when the tick was skipped."""
        document = await self.fetch()
        if document is None:
            self.skipped_ticks += 1
            return False
        return await self.process(document)

    async def process(self, document) -> bool:
        conferences = reportable_conferences(document)
        if conferences is None:
            self.skipped_ticks += 1
            logger.warning(f"Malformed bridge document, skipping tick: {str(document)[:200]}")
            return False
        self.ticks += 1
        timestamp = document.get("time")
        if timestamp is None:
            timestamp = epoch_ms()

        created, removed = self.registry.reconcile(conferences)
        for conf_id in created:
            self.registry.update_endpoints(conf_id, endpoint_stats_ids(conferences[conf_id]))
            await self.transport.send(identity_message(self.registry.get(conf_id)))
        for state in removed.values():
            await self.transport.send(close_message(state))

        for conf_id, conf in conferences.items():
            await self._process_conference(conf_id, conf, timestamp)
        return True

    async def _process_conference(self, conf_id: str, conf: dict, timestamp):
        state = self.registry.get(conf_id)

        data = dict(conf)
        data["timestamp"] = timestamp

        if self.registry.update_endpoints(conf_id, endpoint_stats_ids(conf)):
            await self.transport.send(identity_message(state))

        previous = self.registry.record_snapshot(conf_id, data)
        delta = diff_snapshots(previous or {}, data)
        logger.debug(f"stats-entry: conf={conf_id} keys={len(delta)}")
        await self.transport.send(stats_entry_message(state, delta))

        if self.log_correlator is not None:
            lines = self.log_correlator.take(state.meeting_unique_id)
            if lines:
                await self.transport.send(logs_entry_message(state, lines))

    async def run(self):
        """Tick every poll_interval; a slow tick delays the next one instead of overlapping it."""
        loop = asyncio.get_running_loop()
        while not self._stopping.is_set():
            started = loop.time()
            logger.debug("Fetching data")
            await self.tick()
            delay = max(0.0, self.poll_interval - (loop.time() - started))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass


# ========== CLI ==========
def parse_args(argv=None):
    """Parse flags; defaults come from the environment after loading the .env file."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--env", type=str, default=".env")
    known, _ = pre.parse_known_args(argv)
    load_dotenv(known.env)

    jvb_address = os.getenv("JVB_ADDRESS", JVB_ADDRESS)
    rtcstats_server = os.getenv("RTCSTATS_SERVER", RTCSTATS_SERVER)

    parser = argparse.ArgumentParser(description="Push Jitsi Videobridge stats to an rtcstats server")
    parser.add_argument("--env", type=str, default=".env",
                        help="Path to .env file (default: .env)")
    parser.add_argument("--jvb-address", default=jvb_address, required=jvb_address is None,
                        help="Base URL of the JVB REST API, e.g. http://127.0.0.1:8080/debug (env JVB_ADDRESS)")
    parser.add_argument("--jvb-stats-path", default=os.getenv("JVB_STATS_PATH", JVB_STATS_PATH),
                        help="Path of the stats document under the JVB address (env JVB_STATS_PATH)")
    parser.add_argument("--rtcstats-server", default=rtcstats_server, required=rtcstats_server is None,
                        help="WebSocket URL of the rtcstats server (env RTCSTATS_SERVER)")
    parser.add_argument("--jvb-log-file", default=os.getenv("JVB_LOG_FILE", JVB_LOG_FILE),
                        help="JVB log file to tail and forward (env JVB_LOG_FILE)")
    parser.add_argument("--display-name", default=os.getenv("RTCSTATS_DISPLAY_NAME", DISPLAY_NAME),
                        help="Name this agent reports itself as (env RTCSTATS_DISPLAY_NAME)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def main_async(args):
    stats_url = build_stats_url(args.jvb_address, args.jvb_stats_path)

    logger.info("=" * 60)
    logger.info("JVB rtcstats push starting")
    logger.info("=" * 60)
    logger.info(f"JVB stats: {stats_url} every {POLL_INTERVAL_SECS}s")
    logger.info(f"rtcstats server: {args.rtcstats_server} protocol={RTCSTATS_PROTOCOL}")
    logger.info(f"Display name: {args.display_name}")
    logger.info(f"JVB log file: {args.jvb_log_file or 'disabled'}")
    logger.info("=" * 60)

    client = JvbStatsClient(stats_url)
    transport = RtcstatsTransport(args.rtcstats_server, RTCSTATS_PROTOCOL, args.display_name)
    registry = SessionRegistry(args.display_name)

    correlator = None
    log_tail = None
    tasks = []
    if args.jvb_log_file:
        correlator = LogCorrelator()
        log_tail = JvbLogTail(args.jvb_log_file, correlator)
        tasks.append(asyncio.create_task(run_task("log_tail", log_tail.run())))

    agent = RtcstatsPushAgent(client.fetch, transport, registry, correlator)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.stop)
        except NotImplementedError:
            pass

    transport.start()
    try:
        try:
            await transport.wait_connected(timeout=FIRST_CONNECT_WAIT_SECS)
        except asyncio.TimeoutError:
            logger.warning(f"rtcstats server not reachable after {FIRST_CONNECT_WAIT_SECS}s, polling anyway")
        await run_task("poll", agent.run())
    finally:
        logger.info("Shutting down")
        if log_tail is not None:
            log_tail.stop()
        await transport.stop()
        await client.close()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def main(argv=None):
    """Main entry point."""
    sys.stdout.reconfigure(line_buffering=True)
    args = parse_args(argv)
    setup_logging(args.debug)
    asyncio.run(main_async(args))


if __name__ == "__main__":
    main()
