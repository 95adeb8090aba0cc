from __future__ import annotations

from dataclasses import dataclass

from user_agents import parse as parse_user_agent_string

MAX_USER_AGENT_LENGTH = 500
MAX_DEVICE_FIELD_LENGTH = 100
MAX_IP_LENGTH = 45

# Family reported by uap-core when no rule matched.
UNKNOWN_FAMILY = "Other"


@dataclass(frozen=True)
class DeviceInfo:
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None


@dataclass(frozen=True)
class ClientContext:
    """Per-request client metadata, built once and passed to every audit write."""

    ip_address: str | None = None
    user_agent: str | None = None
    browser: str | None = None
    os: str | None = None
    device_type: str | None = None

    @classmethod
    def from_headers(cls, *, user_agent: str | None, ip_address: str | None) -> "ClientContext":
        sanitized = sanitize_for_log(user_agent, MAX_USER_AGENT_LENGTH)
        device = parse_user_agent(sanitized)
        return cls(
            ip_address=ip_address,
            user_agent=sanitized,
            browser=device.browser,
            os=device.os,
            device_type=device.device_type,
        )

    def as_columns(self) -> dict[str, str | None]:
        return {
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "browser": self.browser,
            "os": self.os,
            "device_type": self.device_type,
        }


def sanitize_for_log(value: str | None, max_length: int = MAX_USER_AGENT_LENGTH) -> str | None:
    if not value or not isinstance(value, str):
        return None
    trimmed = value.strip()[:max_length]
    return trimmed or None


def _label(family: str | None, version: str | None) -> str | None:
    if not family or family == UNKNOWN_FAMILY:
        return None
    label = f"{family} {version}" if version else family
    return label[:MAX_DEVICE_FIELD_LENGTH]


def parse_user_agent(user_agent: str | None) -> DeviceInfo:
    if not user_agent:
        return DeviceInfo()

    parsed = parse_user_agent_string(user_agent)
    if parsed.is_tablet:
        device_type = "tablet"
    elif parsed.is_mobile:
        device_type = "mobile"
    else:
        device_type = "desktop"

    return DeviceInfo(
        browser=_label(parsed.browser.family, parsed.browser.version_string),
        os=_label(parsed.os.family, parsed.os.version_string),
        device_type=device_type,
    )


def extract_ip_address(
    *,
    forwarded_for: str | None,
    real_ip: str | None,
    peer_host: str | None,
) -> str | None:
    for candidate in (
        forwarded_for.split(",")[0] if forwarded_for else None,
        real_ip,
        peer_host,
    ):
        if candidate is None:
            continue
        candidate = candidate.strip()
        if not candidate:
            continue
        if len(candidate) > MAX_IP_LENGTH:
            return None
        return candidate
    return None
