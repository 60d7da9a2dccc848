from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

NOARCH = "noarch"

KNOWN_PLATFORMS: tuple[str, ...] = (
    NOARCH,
    "linux-32",
    "linux-64",
    "linux-aarch64",
    "linux-armv6l",
    "linux-armv7l",
    "linux-ppc64le",
    "linux-ppc64",
    "linux-s390x",
    "linux-riscv32",
    "linux-riscv64",
    "osx-64",
    "osx-arm64",
    "win-32",
    "win-64",
    "win-arm64",
    "emscripten-wasm32",
    "wasi-wasm32",
    "zos-z",
)

_CHANNEL_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+(/[A-Za-z0-9_.\-]+)*$")
_PLATFORMS_SUFFIX_RE = re.compile(r"\[(?P<platforms>[^\]]*)\]\s*$")
_URL_SCHEMES = ("http://", "https://", "file://")


class InvalidPlatform(ValueError):
    pass


class InvalidChannel(ValueError):
    pass


def parse_platform(platform: str) -> str:
    value = platform.strip().lower()
    if value not in KNOWN_PLATFORMS:
        raise InvalidPlatform(
            f"'{platform}' is not a known platform. "
            f"Valid platforms are {', '.join(KNOWN_PLATFORMS)}"
        )
    return value


@dataclass(frozen=True)
class Channel:
    """A conda channel and, optionally, the only subdirs to use from it."""

    name: str
    base_url: str
    platforms: Optional[tuple[str, ...]] = None

    def platform_url(self, platform: str) -> str:
        return f"{self.base_url}{platform}/"


def parse_channel(channel: str, channel_alias: str) -> Channel:
    """Parse ``conda-forge``, ``https://host/path`` or ``name[linux-64,noarch]``.

    Bare names are resolved relative to *channel_alias*.
    """
    text = channel.strip()
    platforms: Optional[tuple[str, ...]] = None

    suffix = _PLATFORMS_SUFFIX_RE.search(text)
    if suffix is not None:
        text = text[: suffix.start()].strip()
        items = [p.strip() for p in suffix.group("platforms").split(",") if p.strip()]
        if not items:
            raise InvalidChannel("empty platform list")
        try:
            platforms = tuple(dict.fromkeys(parse_platform(p) for p in items))
        except InvalidPlatform as exc:
            raise InvalidChannel(str(exc)) from exc

    if not text:
        raise InvalidChannel("empty channel")

    if text.lower().startswith(_URL_SCHEMES):
        name = text.split("://", 1)[1].strip("/")
        if not name:
            raise InvalidChannel(f"'{channel}' has no host or path")
        base_url = text.rstrip("/") + "/"
        return Channel(name=name, base_url=base_url, platforms=platforms)

    if not _CHANNEL_NAME_RE.match(text):
        raise InvalidChannel(f"'{channel}' is neither a channel name nor a URL")
    base_url = f"{channel_alias.rstrip('/')}/{text}/"
    return Channel(name=text, base_url=base_url, platforms=platforms)
