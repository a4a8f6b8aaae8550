"""User-agent normalization for visit events.

Turns a raw ``User-Agent`` header into the three categories the analytics
views group by. Order matters in every table below: the first matching
pattern wins, which is how e.g. Edge (whose UA also says "Chrome" and
"Safari") is told apart from Chrome.

Anything that matches nothing, including a missing header, is reported as
``"unknown"``; parsing never raises.
"""

import re
from dataclasses import dataclass

from app.enums import DeviceCategory

__all__ = ["UNKNOWN", "UserAgentInfo", "parse_user_agent"]

UNKNOWN = "unknown"

_BOT = re.compile(r"bot|crawl|spider|slurp|facebookexternalhit|preview", re.IGNORECASE)
_TABLET = re.compile(r"iPad|Tablet|PlayBook|Silk|Kindle|Android(?!.*Mobile)", re.IGNORECASE)
_MOBILE = re.compile(r"Mobi|iPhone|iPod|Windows Phone|BlackBerry|Opera Mini", re.IGNORECASE)
_DESKTOP = re.compile(r"Windows NT|Macintosh|X11|CrOS|Linux x86_64", re.IGNORECASE)

_BROWSERS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Edge", re.compile(r"Edg(e|A|iOS)?/")),
    ("Opera", re.compile(r"OPR/|Opera")),
    ("Samsung Internet", re.compile(r"SamsungBrowser/")),
    ("Yandex", re.compile(r"YaBrowser/")),
    ("Firefox", re.compile(r"Firefox/|FxiOS/")),
    ("Chrome", re.compile(r"Chrome/|CriOS/")),
    ("Safari", re.compile(r"Version/[\d.]+.*Safari/")),
    ("IE", re.compile(r"MSIE |Trident/")),
)

_OPERATING_SYSTEMS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Windows Phone", re.compile(r"Windows Phone")),
    ("Windows", re.compile(r"Windows")),
    ("iOS", re.compile(r"iPhone|iPad|iPod")),
    ("Mac OS", re.compile(r"Mac OS X|Macintosh")),
    ("Android", re.compile(r"Android")),
    ("Chrome OS", re.compile(r"CrOS")),
    ("Linux", re.compile(r"Linux|X11")),
)


@dataclass(frozen=True)
class UserAgentInfo:
    device: str = UNKNOWN
    browser: str = UNKNOWN
    os: str = UNKNOWN


def _device(user_agent: str) -> str:
    if _BOT.search(user_agent):
        return DeviceCategory.BOT.value
    if _TABLET.search(user_agent):
        return DeviceCategory.TABLET.value
    if _MOBILE.search(user_agent):
        return DeviceCategory.MOBILE.value
    if _DESKTOP.search(user_agent):
        return DeviceCategory.DESKTOP.value
    return DeviceCategory.UNKNOWN.value


def _first_match(user_agent: str, table: tuple[tuple[str, re.Pattern[str]], ...]) -> str:
    for name, pattern in table:
        if pattern.search(user_agent):
            return name
    return UNKNOWN


def parse_user_agent(user_agent: str | None) -> UserAgentInfo:
    if not user_agent or not user_agent.strip():
        return UserAgentInfo()
    return UserAgentInfo(
        device=_device(user_agent),
        browser=_first_match(user_agent, _BROWSERS),
        os=_first_match(user_agent, _OPERATING_SYSTEMS),
    )
