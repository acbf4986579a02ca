"""Route-level security gate.

This module provides request validation, bot flagging and per-IP rate
limiting with burst detection. An IP that bursts past the burst limit is
blocked for a fixed duration, independent of the regular window. Per-IP
state is swept periodically by a background task to bound memory.
"""

import asyncio
import math
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Pattern
from urllib.parse import unquote_plus

from tendergate.app.core.logging import get_logger
from tendergate.app.exceptions import RequestBlocked

logger = get_logger(__name__)


SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Content-Security-Policy": "; ".join([
        "default-src 'self'",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com",
        "font-src 'self' https://fonts.gstatic.com",
        "img-src 'self' data: https: blob:",
        "connect-src 'self' https://generativelanguage.googleapis.com https://*.googleapis.com",
        "frame-ancestors 'none'",
    ]),
}

ALLOWED_METHODS = ("GET", "POST", "OPTIONS")

# Retry hint for IPs on the permanent block list
PERMANENT_BLOCK_RETRY_AFTER = 60

ATTACK_SIGNATURES: List[Pattern[str]] = [
    re.compile(r"\.\."),                          # path traversal
    re.compile(r"<script", re.I),                 # script injection
    re.compile(r"javascript:", re.I),             # script injection
    re.compile(r"\bor\b.*=", re.I),               # SQL injection
    re.compile(r"\bunion\b.*\bselect", re.I),     # SQL injection
    re.compile(r";.*--"),                         # SQL injection
    re.compile(r"\$\{.*\}"),                      # template injection
]

BOT_PATTERNS: List[Pattern[str]] = [
    re.compile(r"curl", re.I),
    re.compile(r"wget", re.I),
    re.compile(r"python-requests", re.I),
    re.compile(r"scrapy", re.I),
    re.compile(r"bot(?!.*google|.*bing|.*yahoo)", re.I),
]

MAX_SANITIZED_LENGTH = 10000


@dataclass
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


@dataclass
class BotCheck:
    is_bot: bool
    reason: Optional[str] = None


@dataclass
class IPRecord:
    """Per-IP counters. Created on first sighting, removed by the sweeper."""
    request_count: int = 0
    window_start: float = 0.0
    burst_count: int = 0
    burst_window_start: float = 0.0
    blocked_until: Optional[float] = None


@dataclass
class RateLimitDecision:
    allowed: bool
    reason: Optional[str] = None
    retry_after: Optional[int] = None
    remaining: int = 0
    reset_at: float = 0.0


@dataclass
class GateResult:
    """Outcome of a request that passed the gate."""
    ip: str
    user_agent: str
    is_bot: bool
    remaining: int
    reset_at: float


def get_client_ip(headers: Mapping[str, str], client_host: Optional[str] = None) -> str:
    """Resolve the caller address, preferring proxy/CDN headers.

    Order: first hop of X-Forwarded-For, X-Real-IP, CF-Connecting-IP,
    then the socket peer.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    for name in ("x-real-ip", "cf-connecting-ip"):
        value = headers.get(name)
        if value:
            return value.strip()
    return client_host or "unknown"


def validate_request(
    method: str,
    url: str,
    max_url_length: int = 2048,
    allowed_methods: Iterable[str] = ALLOWED_METHODS,
) -> ValidationResult:
    """Reject disallowed methods, oversized URLs and known attack signatures."""
    errors: List[str] = []

    method = (method or "").upper()
    if method not in allowed_methods:
        errors.append(f"Method {method} not allowed")

    url = url or ""
    if len(url) > max_url_length:
        errors.append("URL too long")

    targets = (url, unquote_plus(url))
    for pattern in ATTACK_SIGNATURES:
        if any(pattern.search(target) for target in targets):
            errors.append("Suspicious pattern detected in URL")
            break

    return ValidationResult(valid=not errors, errors=errors)


def detect_bot(user_agent: Optional[str]) -> BotCheck:
    """Heuristic bot check on the User-Agent header.

    A missing header is not flagged; a very short one is.
    """
    if not user_agent:
        return BotCheck(is_bot=False)

    for pattern in BOT_PATTERNS:
        if pattern.search(user_agent):
            return BotCheck(is_bot=True, reason=f"Matched pattern: {pattern.pattern}")

    if len(user_agent) < 10:
        return BotCheck(is_bot=True, reason="Suspiciously short user agent")

    return BotCheck(is_bot=False)


def sanitize_input(text: str) -> str:
    """Strip NUL bytes, escape HTML metacharacters and cap the length."""
    if not isinstance(text, str):
        return text
    cleaned = text.replace("\0", "")
    cleaned = (
        cleaned.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&#x27;")
    )
    return cleaned[:MAX_SANITIZED_LENGTH]


class SecurityGate:
    """Per-route gate: validation, bot flagging and per-IP limiting.

    Per IP, two counters run side by side: a regular window
    (``max_requests`` per ``window_seconds``) and a short burst window
    (``burst_limit`` per ``burst_window_seconds``). Exceeding the burst
    limit blocks the IP for ``block_duration``; exceeding the regular
    window only throttles until the window resets.

    Usage:
        gate = SecurityGate()
        await gate.start()          # background sweeper
        result = gate.check("POST", "/api/chat", headers, "10.0.0.1")
        await gate.stop()
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 30,
        burst_limit: int = 10,
        burst_window_seconds: float = 5.0,
        block_duration: float = 300.0,
        max_url_length: int = 2048,
        block_bots: bool = False,
        blocked_ips: Iterable[str] = (),
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.burst_limit = burst_limit
        self.burst_window_seconds = burst_window_seconds
        self.block_duration = block_duration
        self.max_url_length = max_url_length
        self.block_bots = block_bots
        self.sweep_interval = sweep_interval
        self._clock = clock

        self._records: Dict[str, IPRecord] = {}
        self._permanent_blocks: set[str] = set(blocked_ips)

        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    # Blocking ------------------------------------------------------------

    def is_blocked(self, ip: str) -> bool:
        record = self._records.get(ip)
        if record is None or record.blocked_until is None:
            return False
        if self._clock() < record.blocked_until:
            return True
        record.blocked_until = None
        return False

    def _block_temporarily(self, ip: str, record: IPRecord) -> None:
        record.blocked_until = self._clock() + self.block_duration
        logger.warning(
            f"Blocked IP {ip} for {self.block_duration:.0f}s",
            extra={"client_ip": ip},
        )

    def block_ip(self, ip: str) -> None:
        """Block an IP until it is explicitly unblocked."""
        self._permanent_blocks.add(ip)
        logger.warning(f"IP permanently blocked: {ip}", extra={"client_ip": ip})

    def unblock_ip(self, ip: str) -> None:
        """Lift both permanent and temporary blocks for an IP."""
        self._permanent_blocks.discard(ip)
        record = self._records.get(ip)
        if record is not None:
            record.blocked_until = None
        logger.info(f"IP unblocked: {ip}", extra={"client_ip": ip})

    # Rate limiting -------------------------------------------------------

    def _record_request(self, ip: str, now: float) -> IPRecord:
        record = self._records.get(ip)
        if record is None:
            record = IPRecord(window_start=now, burst_window_start=now)
            self._records[ip] = record

        if now - record.window_start > self.window_seconds:
            record.request_count = 0
            record.window_start = now
        if now - record.burst_window_start > self.burst_window_seconds:
            record.burst_count = 0
            record.burst_window_start = now

        record.request_count += 1
        record.burst_count += 1
        return record

    def check_rate_limit(self, ip: str) -> RateLimitDecision:
        """Count a request from ``ip`` and decide whether it may proceed."""
        if ip in self._permanent_blocks:
            return RateLimitDecision(
                allowed=False,
                reason="IP permanently blocked",
                retry_after=PERMANENT_BLOCK_RETRY_AFTER,
            )

        now = self._clock()
        if self.is_blocked(ip):
            remaining_block = self._records[ip].blocked_until - now
            return RateLimitDecision(
                allowed=False,
                reason="IP temporarily blocked due to rate limit violation",
                retry_after=max(1, math.ceil(remaining_block)),
            )

        record = self._record_request(ip, now)
        reset_at = record.window_start + self.window_seconds

        if record.burst_count > self.burst_limit:
            self._block_temporarily(ip, record)
            return RateLimitDecision(
                allowed=False,
                reason="Burst rate limit exceeded - potential DDoS detected",
                retry_after=math.ceil(self.block_duration),
                reset_at=reset_at,
            )

        if record.request_count > self.max_requests:
            return RateLimitDecision(
                allowed=False,
                reason="Rate limit exceeded",
                retry_after=max(1, math.ceil(reset_at - now)),
                reset_at=reset_at,
            )

        return RateLimitDecision(
            allowed=True,
            remaining=self.max_requests - record.request_count,
            reset_at=reset_at,
        )

    # Gate ----------------------------------------------------------------

    def check(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        client_host: Optional[str] = None,
    ) -> GateResult:
        """Run validation, bot detection and rate limiting for one request.

        Raises:
            RequestBlocked: 400 for invalid requests (or flagged bots when
                ``block_bots`` is set), 429 for rate limit violations
        """
        ip = get_client_ip(headers, client_host)
        user_agent = headers.get("user-agent", "")

        validation = validate_request(method, url, self.max_url_length)
        if not validation.valid:
            logger.warning(
                f"Invalid request from {ip}: {', '.join(validation.errors)}",
                extra={"client_ip": ip},
            )
            raise RequestBlocked("Bad Request", status_code=400, errors=validation.errors)

        bot = detect_bot(user_agent)
        if bot.is_bot:
            logger.info(f"Bot detected from {ip}: {bot.reason}", extra={"client_ip": ip})
            if self.block_bots:
                raise RequestBlocked("Bad Request", status_code=400, errors=[bot.reason])

        decision = self.check_rate_limit(ip)
        if not decision.allowed:
            logger.warning(
                f"Rate limit violation from {ip}: {decision.reason}",
                extra={"client_ip": ip},
            )
            raise RequestBlocked(
                "Too Many Requests",
                status_code=429,
                retry_after=decision.retry_after,
            )

        return GateResult(
            ip=ip,
            user_agent=user_agent,
            is_bot=bot.is_bot,
            remaining=decision.remaining,
            reset_at=decision.reset_at,
        )

    # Maintenance ---------------------------------------------------------

    def cleanup(self) -> int:
        """Drop stale per-IP records and expired blocks.

        Returns:
            Number of records removed
        """
        now = self._clock()
        stale = []
        for ip, record in self._records.items():
            if record.blocked_until is not None:
                if now < record.blocked_until:
                    continue
                record.blocked_until = None
                logger.info(f"Unblocked IP: {ip}", extra={"client_ip": ip})
            window_stale = now - record.window_start > self.window_seconds * 2
            burst_stale = now - record.burst_window_start > self.burst_window_seconds * 2
            if window_stale and burst_stale:
                stale.append(ip)
        for ip in stale:
            del self._records[ip]
        return len(stale)

    def get_stats(self) -> dict:
        now = self._clock()
        temporary = [
            ip for ip, r in self._records.items()
            if r.blocked_until is not None and now < r.blocked_until
        ]
        blocked = sorted(set(temporary) | self._permanent_blocks)
        return {
            "active_ips": len(self._records),
            "blocked_ips": len(blocked),
            "blocked_list": blocked,
        }

    async def start(self) -> None:
        """Start the background sweeper task."""
        if self._task is not None:
            logger.debug("Security gate sweeper already running")
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run_sweeps())
        logger.info(f"Started security gate sweeper (interval: {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the background sweeper task."""
        if self._task is None:
            return
        self._stop_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Sweeper did not stop gracefully, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None
            logger.info("Stopped security gate sweeper")

    async def _run_sweeps(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.sweep_interval)
            except asyncio.TimeoutError:
                removed = self.cleanup()
                if removed:
                    logger.debug(f"Swept {removed} stale IP records")
