import os
import json
import time
import logging
import functools
import subprocess
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

import requests


class NotificationError(Exception):
    pass


class NotifyKind(str, Enum):
    ALERT = "alert"
    CLEARED = "cleared"
    INFO = "info"


DEFAULT_RECIPIENT = "root"

# =============================
# Message templates
# =============================
TEMPLATES = {
    NotifyKind.ALERT: "{subject} detected errors on {host}:\n{message}",
    NotifyKind.CLEARED: "{subject} errors cleared on {host}. Previous errors were:\n{message}",
    NotifyKind.INFO: "{subject} on {host}: {message}",
}

SUBJECT_LINES = {
    NotifyKind.ALERT: "{subject} errors on {host}",
    NotifyKind.CLEARED: "{subject} errors cleared on {host}",
    NotifyKind.INFO: "{subject} notice for {host}",
}


# Timestamping utility
def get_current_timestamps(tz_name: str = "") -> tuple[str, str]:
    """
    Returns a tuple of (utc_iso, local_iso):
    - utc_iso: UTC ISO8601 without fractional sec + 'Z'
    - local_iso: ISO8601 in ``tz_name`` (system local time when empty)
    """
    now_utc = datetime.now(timezone.utc).replace(microsecond=0)
    utc_iso = now_utc.isoformat().replace('+00:00', 'Z')
    local = now_utc.astimezone(ZoneInfo(tz_name)) if tz_name else now_utc.astimezone()
    return utc_iso, local.isoformat()


# Decorator: centralize logging and exception re-raise
def log_and_reraise(func):
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            utc, local = get_current_timestamps()
            logging.error(f"[{utc}][{local}] Exception in {func.__name__}: {e}")
            raise
    return wrapper


@dataclass(frozen=True)
class PresentationTag:
    username: str
    icon: str
    label: str


# =============================
# Transports
# =============================
class WebhookTransport:
    """Slack-compatible incoming webhook."""

    def __init__(self, url: str, timeout: int = 30):
        self.url = url
        self.timeout = timeout

    @log_and_reraise
    def send(self, text: str, title: str, tag: PresentationTag, channel: Optional[str]) -> None:
        payload = {
            "text": text,
            "username": tag.username,
            "icon_emoji": tag.icon,
        }
        if channel:
            payload["channel"] = channel
        resp = requests.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()


class MailTransport:
    """Local ``mail -s <subject> <addr>``."""

    def __init__(self, mail_cmd: str = "mail"):
        self.mail_cmd = mail_cmd

    @log_and_reraise
    def send(self, text: str, title: str, tag: PresentationTag, channel: Optional[str]) -> None:
        recipient = channel or DEFAULT_RECIPIENT
        r = subprocess.run(
            [self.mail_cmd, "-s", f"[{tag.label}] {title}", recipient],
            input=text,
            capture_output=True,
            text=True,
            timeout=60,
        )
        if r.returncode != 0:
            raise NotificationError(f"{self.mail_cmd} exited {r.returncode}: {r.stderr.strip()}")


# =============================
# Notifier
# =============================
class Notifier:
    def __init__(self, transport, destination: str = "", username: str = "nhc", icon: str = ":hospital:",
                 retries: int = 3, retry_interval: int = 5, log_path: str = "", tz_name: str = ""):
        self.transport = transport
        self.destination = destination
        self.username = username
        self.icon = icon
        self.retries = max(1, retries)
        self.retry_interval = retry_interval
        self.log_path = log_path
        self.tz_name = tz_name

    @classmethod
    def from_config(cls, config):
        if config.webhook_url:
            transport = WebhookTransport(config.webhook_url)
        else:
            transport = MailTransport()
        return cls(
            transport,
            destination=config.notify_destination,
            username=config.notify_username,
            icon=config.notify_icon,
            retries=config.notify_retries,
            retry_interval=config.notify_retry_interval,
            log_path=config.notify_log_path,
            tz_name=config.display_timezone,
        )

    def presentation_tag(self, destination: Optional[str]) -> PresentationTag:
        if destination:
            return PresentationTag(username=self.username, icon=self.icon, label=f"#{destination.lstrip('#')}")
        return PresentationTag(username=f"{self.username}-local", icon=":computer:", label="local")

    @staticmethod
    def render(kind: NotifyKind, subject: str, host: str, message: str) -> tuple[str, str]:
        values = {"subject": subject, "host": host, "message": message.rstrip("\n")}
        return SUBJECT_LINES[kind].format(**values), TEMPLATES[kind].format(**values)

    def notify(self, kind: NotifyKind, subject: str, host: str, message: str,
               destination: Optional[str] = None) -> bool:
        """
        Render and dispatch one message. Transport failures are retried,
        then logged; they never propagate.

        :return: True if the transport accepted the message
        """
        destination = destination if destination is not None else self.destination
        title, text = self.render(kind, subject, host, message)
        tag = self.presentation_tag(destination)

        for attempt in range(1, self.retries + 1):
            try:
                utc, local = get_current_timestamps(self.tz_name)
                self.transport.send(text, title, tag, destination or None)
                status = "success"
                logging.info(f"[{utc}][{local}] {kind.value} notification for {host} sent to {tag.label}")
            except Exception as e:
                status = "failure"
                logging.warning(f"Notification attempt {attempt}/{self.retries} failed: {e}")
            self.record(kind, status, host, tag.label)
            if status == "success":
                return True
            if attempt < self.retries:
                time.sleep(self.retry_interval)

        logging.warning(f"Giving up on {kind.value} notification for {host}")
        return False

    def record(self, kind: NotifyKind, status: str, host: str, destination: str) -> None:
        """
        Append the delivery attempt to the NDJSON notification log (if configured).
        """
        if not self.log_path:
            return
        utc, _ = get_current_timestamps()
        entry = {
            "timestamp": utc,
            "kind": kind.value,
            "status": status,
            "host": host,
            "destination": destination,
        }
        try:
            with open(self.log_path, 'a', encoding='utf-8') as f:
                f.write(json.dumps(entry) + '\n')
        except OSError as e:
            logging.warning(f"Cannot write notification log {self.log_path}: {e}")


def notify_outcome(notifier: Notifier, outcome, subject: str, host: str) -> bool:
    """Send the notification an engine outcome calls for, if any."""
    if not outcome.should_notify:
        return False
    return notifier.notify(outcome.notify_kind, os.path.basename(subject), host, outcome.message)
