"""
Block type registry.

Each entry: name, icon, category, has_statistics, tier (None = free),
allowed_regions (default content only), and optional embed hosts.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.biohost.modules.editor.models import REGIONS

ALL_REGIONS = REGIONS
CATEGORIES = ("standard", "embeds", "advanced", "payments")


@dataclass(frozen=True)
class BlockType:
    key: str
    name: str
    icon: str
    category: str
    has_statistics: bool = False
    tier: str | None = None
    allowed_regions: tuple[str, ...] = ("content",)
    embed_hosts: tuple[str, ...] = ()
    needs_url: bool = False
    defaults: dict[str, Any] = field(default_factory=dict)


BLOCK_TYPES: dict[str, BlockType] = {
    b.key: b
    for b in (
        # free
        BlockType("link", "Link", "fa-link", "standard", has_statistics=True, allowed_regions=ALL_REGIONS,
                  needs_url=True, defaults={"name": "My link", "open_in_new_tab": True}),
        BlockType("heading", "Heading", "fa-heading", "standard", allowed_regions=ALL_REGIONS,
                  defaults={"text": "Heading", "heading_type": "h2"}),
        BlockType("paragraph", "Paragraph", "fa-paragraph", "standard", defaults={"text": ""}),
        BlockType("avatar", "Avatar", "fa-user-circle", "standard", defaults={"image": None, "size": 120, "alt": ""}),
        BlockType("image", "Image", "fa-image", "standard", defaults={"image": None, "alt": ""}),
        BlockType("socials", "Socials", "fa-share-nodes", "standard", allowed_regions=ALL_REGIONS,
                  defaults={"socials": {}}),
        BlockType("business_hours", "Business hours", "fa-clock", "advanced", defaults={"hours": {}, "timezone": "Europe/London"}),
        BlockType("modal_text", "Modal text", "fa-window-restore", "advanced", defaults={"name": "Read more", "content": ""}),
        BlockType("youtube", "YouTube", "fa-youtube", "embeds", embed_hosts=("www.youtube.com", "youtu.be"),
                  needs_url=True),
        BlockType("spotify", "Spotify", "fa-spotify", "embeds", embed_hosts=("open.spotify.com",), needs_url=True),
        BlockType("map", "Map", "fa-map", "embeds", defaults={"address": ""}),
        BlockType("email_collector", "Email collector", "fa-envelope", "advanced", has_statistics=True,
                  defaults={"name": "Subscribe", "placeholder": "Your email", "button_text": "Subscribe", 
                            "success_message": ""}),
        BlockType("phone_collector", "Phone collector", "fa-phone", "advanced", has_statistics=True,
                  defaults={"name": "Get a call back", "placeholder": "Your phone number", "button_text": "Send",
                            "success_message": ""}),
        BlockType("contact_collector", "Contact form", "fa-address-book", "advanced", has_statistics=True,
                  defaults={"name": "Get in touch", "button_text": "Send", "success_message": ""}),
        # pro
        BlockType("header", "Header", "fa-id-card", "standard", tier="pro", allowed_regions=("header", "content"),
                  defaults={"title": "", "subtitle": "", "image": None}),
        BlockType("image_grid", "Image grid", "fa-table-cells", "standard", tier="pro", defaults={"images": [], "columns": 2}),
        BlockType("divider", "Divider", "fa-minus", "standard", tier="pro", allowed_regions=ALL_REGIONS,
                  defaults={"style": "solid"}),
        BlockType("list", "List", "fa-list", "standard", tier="pro", defaults={"items": [], "style": "bullet"}),
        # ultimate
        BlockType("big_link", "Big link", "fa-square-arrow-up-right", "standard", has_statistics=True, tier="ultimate",
                  needs_url=True, defaults={"name": "My link", "description": "", "image": None}),
        BlockType("audio", "Audio", "fa-music", "embeds", tier="ultimate", defaults={"file": None}),
        BlockType("video", "Video", "fa-video", "embeds", tier="ultimate", defaults={"file": None}),
        BlockType("file", "File", "fa-file", "advanced", has_statistics=True, tier="ultimate", defaults={"file": None, "name": "Download"}),
        BlockType("cta", "Call to action", "fa-bullhorn", "payments", has_statistics=True, tier="ultimate",
                  needs_url=True, defaults={"name": "Buy now", "description": ""}),
    )
}

# Types rendered as anchors that go through the tracked click-through.
LINK_BLOCK_TYPES = frozenset(k for k, b in BLOCK_TYPES.items() if b.needs_url and not b.embed_hosts)
COLLECTOR_BLOCK_TYPES = {"email_collector": "email", "phone_collector": "phone", "contact_collector": "contact"}


def get_block_type(key: str) -> BlockType | None:
    return BLOCK_TYPES.get(key)


def types_by_category() -> dict[str, list[BlockType]]:
    out: dict[str, list[BlockType]] = {c: [] for c in CATEGORIES}
    for b in BLOCK_TYPES.values():
        out.setdefault(b.category, []).append(b)
    return out


def types_for_region(region: str) -> list[BlockType]:
    return [b for b in BLOCK_TYPES.values() if region in b.allowed_regions]
