"""会话上下文：来源分类、设备类型、下发给前端 tracker 的配置"""
import re
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from personaflow.core.config import Settings

SEARCH_ENGINES = ("google", "bing", "yahoo", "duckduckgo", "baidu", "yandex")
SOCIAL_PLATFORMS = (
    "facebook", "twitter", "linkedin", "instagram", "pinterest",
    "reddit", "tiktok", "youtube", "t.co",
)
EMAIL_SERVICES = ("mail.google", "outlook", "mail.yahoo", "protonmail")

# 平板先于手机判断，部分平板 UA 也会命中手机规则
TABLET_PATTERN = re.compile(r"iPad|Android(?!.*Mobile)|Tablet", re.IGNORECASE)
MOBILE_PATTERN = re.compile(
    r"Mobile|iPhone|iPod|Android.*Mobile|webOS|BlackBerry|Opera Mini|IEMobile",
    re.IGNORECASE,
)

SHARE_SELECTORS = (
    ".share-facebook", ".share-twitter", ".share-linkedin", ".share-pinterest",
    ".share-reddit", ".share-whatsapp", ".share-telegram", "[data-share]",
    ".social-share-button", ".wp-block-social-link",
)
COPY_LINK_SELECTORS = (".copy-link", ".copy-url", "[data-copy-link]", ".share-copy")
EMAIL_SHARE_SELECTORS = ('a[href^="mailto:"]', ".share-email", ".email-share")
PRIVATE_SHARE_SELECTORS = (".share-whatsapp", ".share-telegram", ".share-signal", "[data-private-share]")


def _host_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    host = urlparse(url if "//" in url else f"//{url}").hostname
    return host.lower() if host else None


def _matches(host: str, token: str) -> bool:
    # 带点的标记按域名段匹配，避免 t.co 命中 microsoft.com
    if "." not in token:
        return token in host
    return (
        host == token
        or host.startswith(f"{token}.")
        or host.endswith(f".{token}")
        or f".{token}." in host
    )


def classify_referral_source(referer: Optional[str], site_host: Optional[str] = None) -> str:
    """
    来源分类：direct / internal / email / organic / social / referral

    邮箱服务的域名里也带搜索引擎名字（mail.google），所以先于搜索引擎判断。
    """
    host = _host_of(referer)
    if not host:
        return "direct"

    if site_host and host == _host_of(site_host):
        return "internal"

    if any(_matches(host, service) for service in EMAIL_SERVICES):
        return "email"
    if any(_matches(host, engine) for engine in SEARCH_ENGINES):
        return "organic"
    if any(_matches(host, platform) for platform in SOCIAL_PLATFORMS):
        return "social"

    return "referral"


def classify_device_type(user_agent: Optional[str]) -> str:
    """设备类型：tablet / mobile / desktop"""
    if not user_agent:
        return "desktop"
    if TABLET_PATTERN.search(user_agent):
        return "tablet"
    if MOBILE_PATTERN.search(user_agent):
        return "mobile"
    return "desktop"


def build_tracker_context(
    settings: Settings,
    referer: Optional[str] = None,
    user_agent: Optional[str] = None,
    site_host: Optional[str] = None,
    is_logged_in: bool = False,
    is_returning: bool = False,
) -> Dict[str, Any]:
    """组装下发给前端 tracker 的会话 / 负面信号 / 社交分享配置"""
    context: Dict[str, Any] = {
        "negative": {
            "enabled": settings.ENABLE_NEGATIVE_SIGNALS,
            "bounceThreshold": settings.BOUNCE_THRESHOLD_S,
            "pogoStickThreshold": settings.POGO_STICK_THRESHOLD_S,
            "fastScrollVelocity": settings.FAST_SCROLL_VELOCITY,
        },
    }

    if settings.ENABLE_SESSION_CONTEXT:
        context["session"] = {
            "enabled": True,
            "referralSource": classify_referral_source(referer, site_host),
            "deviceType": classify_device_type(user_agent),
            "isLoggedIn": is_logged_in,
            "isFirstVisit": not is_returning,
            "idleTimeout": settings.IDLE_TIMEOUT_S,
            "trackVisibility": True,
            "trackScrollDir": True,
            "trackFontSize": True,
            "trackReaderMode": True,
        }

    if settings.ENABLE_SOCIAL_SIGNALS:
        context["social"] = {
            "enabled": True,
            "interceptNavigatorShare": True,
            "shareSelectors": list(SHARE_SELECTORS),
            "copyLinkSelectors": list(COPY_LINK_SELECTORS),
            "emailShareSelectors": list(EMAIL_SHARE_SELECTORS),
            "privateShareSelectors": list(PRIVATE_SHARE_SELECTORS),
        }

    return context
