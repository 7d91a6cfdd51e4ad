"""
Audit Logger module for the project engine.

Provides structured logging with JSON and human-readable text output,
minimum-level filtering, masking of secrets, redaction of browsing URLs
and optional HMAC signing of entries in audit mode.
"""

import hashlib
import hmac
import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, TextIO
from urllib.parse import urlsplit, urlunsplit

from .config import LoggingConfig
from .enums import LogLevel


@dataclass
class LogEntry:
    """One emitted log record; `signature` is set only in audit mode."""

    timestamp: str
    level: LogLevel
    component: str
    message: str
    data: dict = field(default_factory=dict)
    signature: Optional[str] = None


class AuditLogger:
    """
    Structured logger shared by all engine components.

    Supports:
    - JSON lines, readable text, or both
    - Dropping entries below a configured minimum level
    - Masking of secret values (HMAC secrets, webhook URLs, tokens)
    - Stripping query strings and fragments from logged page URLs
    - HMAC-SHA256 signatures on every entry once audit mode is on
    """

    SENSITIVE_KEYS = frozenset({
        "secret", "token", "password", "hmac_secret", "signing_key",
        "webhook_url", "authorization", "api_key",
    })

    URL_KEYS = frozenset({"url", "page_url", "site_url"})

    MASK_VALUE = "***MASKED***"

    def __init__(
        self,
        output_format: str = "text",
        output_stream: Optional[TextIO] = None,
        min_level: LogLevel = LogLevel.DEBUG,
        redact_urls: bool = True,
    ) -> None:
        """
        Create a logger writing to output_stream.

        Args:
            output_format: 'json', 'text' or 'both' (JSON line first)
            output_stream: Destination stream (defaults to sys.stderr)
            min_level: Entries below this level are discarded
            redact_urls: Strip query strings and fragments from URL fields
        """
        if output_format not in ("json", "text", "both"):
            raise ValueError(f"Invalid output_format: {output_format}")

        self._output_format = output_format
        self._output_stream = output_stream or sys.stderr
        self._min_level = min_level
        self._redact_urls = redact_urls
        self._signing_key: Optional[bytes] = None
        self._entries: list[LogEntry] = []

    @classmethod
    def from_config(
        cls,
        config: LoggingConfig,
        output_stream: Optional[TextIO] = None,
    ) -> "AuditLogger":
        """Build a logger from a LoggingConfig."""
        try:
            min_level = LogLevel(config.level)
        except ValueError:
            raise ValueError(f"Invalid log level: {config.level}")

        logger = cls(
            output_format=config.output_format,
            output_stream=output_stream,
            min_level=min_level,
            redact_urls=config.redact_urls,
        )
        if config.audit_mode and config.audit_signing_key:
            logger.enable_audit_mode(config.audit_signing_key)
        return logger

    @property
    def audit_mode(self) -> bool:
        return self._signing_key is not None

    @property
    def entries(self) -> list[LogEntry]:
        """Get all emitted entries (for testing)."""
        return self._entries.copy()

    def enable_audit_mode(self, signing_key: str) -> None:
        if not signing_key:
            raise ValueError("Signing key cannot be empty")
        self._signing_key = signing_key.encode("utf-8")

    def log(
        self,
        level: LogLevel,
        component: str,
        message: str,
        data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """
        Log an entry in the configured format(s).

        Returns:
            The created LogEntry, or None if it was below the minimum level
        """
        if level.rank < self._min_level.rank:
            return None

        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=level,
            component=component,
            message=message,
            data=self.sanitize(data or {}),
        )

        if self._signing_key is not None:
            entry.signature = self._sign_entry(entry)

        self._entries.append(entry)
        self._output_entry(entry)
        return entry

    def log_error(
        self,
        component: str,
        message: str,
        error: Optional[BaseException] = None,
        additional_data: Optional[dict] = None,
    ) -> Optional[LogEntry]:
        """Log an error together with the exception that caused it."""
        data = dict(additional_data or {})
        if error is not None:
            data["error_type"] = type(error).__name__
            data["error_message"] = str(error)
            if hasattr(error, "code"):
                data["error_code"] = error.code
        return self.log(LogLevel.ERROR, component, message, data)

    def sanitize(self, data: Any, key: str = "") -> Any:
        """
        Recursively mask secrets and redact URLs in logged data.

        Args:
            data: Value to sanitize (dicts and lists are walked)
            key: Key under which the value was found

        Returns:
            Sanitized copy of the value
        """
        key_lower = key.lower()
        if key_lower and any(s in key_lower for s in self.SENSITIVE_KEYS):
            return self.MASK_VALUE
        if isinstance(data, dict):
            return {k: self.sanitize(v, str(k)) for k, v in data.items()}
        if isinstance(data, (list, tuple, set)):
            return [self.sanitize(item, key) for item in data]
        if self._redact_urls and isinstance(data, str) and key_lower in self.URL_KEYS:
            return self.redact_url(data)
        return data

    @staticmethod
    def redact_url(url: str) -> str:
        """Drop query string and fragment from a URL."""
        try:
            parts = urlsplit(url)
        except ValueError:
            return url
        return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))

    def verify_signature(self, entry: LogEntry) -> bool:
        if not entry.signature or self._signing_key is None:
            return False
        return hmac.compare_digest(entry.signature, self._sign_entry(entry))

    def _sign_entry(self, entry: LogEntry) -> str:
        signable = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        content = json.dumps(signable, sort_keys=True, ensure_ascii=False, default=str)
        return hmac.new(self._signing_key, content.encode("utf-8"), hashlib.sha256).hexdigest()

    def _output_entry(self, entry: LogEntry) -> None:
        if self._output_format in ("json", "both"):
            self._output_stream.write(self.format_json(entry) + "\n")
        if self._output_format in ("text", "both"):
            self._output_stream.write(self.format_text(entry) + "\n")
        self._output_stream.flush()

    def format_json(self, entry: LogEntry) -> str:
        obj = {
            "timestamp": entry.timestamp,
            "level": entry.level.value,
            "component": entry.component,
            "message": entry.message,
            "data": entry.data,
        }
        if entry.signature:
            obj["signature"] = entry.signature
        return json.dumps(obj, ensure_ascii=False, default=str)

    def format_text(self, entry: LogEntry) -> str:
        # [TIMESTAMP] LEVEL [COMPONENT] MESSAGE {data}
        parts = [
            f"[{entry.timestamp}]",
            entry.level.value.upper(),
            f"[{entry.component}]",
            entry.message,
        ]
        if entry.data:
            parts.append(json.dumps(entry.data, ensure_ascii=False, default=str))
        text = " ".join(parts)
        if entry.signature:
            text += f" [sig:{entry.signature[:16]}...]"
        return text
