from __future__ import annotations

from dataclasses import dataclass

BOT_MARKERS = ("bot", "crawler", "spider", "slurp", "facebookexternalhit", "preview", "headless")


@dataclass(frozen=True)
class UserAgentInfo:
    device_type: str
    os_name: str | None
    browser_name: str | None
    is_bot: bool = False


def _device(ua: str) -> str:
    if "iPad" in ua or ("Android" in ua and "Mobile" not in ua):
        return "tablet"
    if "iPhone" in ua or ("Android" in ua and "Mobile" in ua) or "Mobi" in ua:
        return "mobile"
    if any(os in ua for os in ("Windows", "Macintosh", "X11", "Linux", "CrOS")):
        return "desktop"
    return "other"


def _os(ua: str) -> str | None:
    if "Windows" in ua:
        return "Windows"
    if "iPhone" in ua or "iPad" in ua or "iPod" in ua:
        return "iOS"
    if "Android" in ua:
        return "Android"
    if "CrOS" in ua:
        return "ChromeOS"
    if "Macintosh" in ua or "Mac OS X" in ua:
        return "macOS"
    if "Linux" in ua or "X11" in ua:
        return "Linux"
    return None


def _browser(ua: str) -> str | None:
    # order matters: most UAs also claim Safari/Chrome
    if "Edg/" in ua or "Edge/" in ua:
        return "Edge"
    if "OPR/" in ua or "Opera" in ua:
        return "Opera"
    if "SamsungBrowser" in ua:
        return "Samsung Internet"
    if "Firefox/" in ua or "FxiOS" in ua:
        return "Firefox"
    if "Chrome/" in ua or "CriOS" in ua:
        return "Chrome"
    if "Safari/" in ua:
        return "Safari"
    return None


def parse_user_agent(ua: str | None) -> UserAgentInfo:
    ua = ua or ""
    lower = ua.lower()
    if not ua or any(m in lower for m in BOT_MARKERS):
        return UserAgentInfo(device_type="other", os_name=None, browser_name=None, is_bot=bool(ua))
    return UserAgentInfo(device_type=_device(ua), os_name=_os(ua), browser_name=_browser(ua))


def is_ios(ua: str | None) -> bool:
    return any(k in (ua or "") for k in ("iPhone", "iPad", "iPod"))


def is_android(ua: str | None) -> bool:
    return "Android" in (ua or "")
