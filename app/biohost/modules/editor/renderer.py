"""
Public page layout.

Builds the HLCRF structure a bio page template walks: each region carries
the CSS classes that hide it on breakpoints whose layout code lacks it, and
each block carries hide-on-<breakpoint> classes from its own visibility list.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING
from urllib.parse import parse_qs, urlparse

from app.biohost.modules.analytics.targeting import VisitorContext, block_visible
from app.biohost.modules.editor.blocks import LINK_BLOCK_TYPES, get_block_type
from app.biohost.modules.editor.models import BREAKPOINTS, REGIONS, Block
from app.biohost.modules.editor.service import layout_for, region_blocks, region_enabled

if TYPE_CHECKING:
    from app.biohost.modules.biolinks.models import BioLink


@dataclass
class RenderedBlock:
    block: Block
    css_classes: str
    tracked: bool

    @property
    def type(self) -> str:
        return self.block.type

    @property
    def settings(self) -> dict:
        return self.block.settings or {}

    @property
    def embed_src(self) -> str | None:
        return embed_url(self.block)


@dataclass
class RenderedRegion:
    name: str
    css_classes: str
    blocks: list[RenderedBlock] = field(default_factory=list)


def embed_url(block: Block) -> str | None:
    """iframe src for embed blocks; None when the stored URL is not on an allowed host."""
    bt = get_block_type(block.type)
    if bt is None or not bt.embed_hosts or not block.location_url:
        return None
    parsed = urlparse(block.location_url)
    if parsed.netloc not in bt.embed_hosts:
        return None
    if block.type == "youtube":
        if parsed.netloc == "youtu.be":
            video_id = parsed.path.lstrip("/")
        else:
            video_id = (parse_qs(parsed.query).get("v") or [""])[0]
        return f"https://www.youtube.com/embed/{video_id}" if video_id else None
    if block.type == "spotify":
        return f"https://open.spotify.com/embed{parsed.path}"
    return block.location_url


def region_classes(layout: dict[str, str], region: str) -> str:
    classes = [f"region-{region}"]
    for bp in BREAKPOINTS:
        if not region_enabled(layout.get(bp, "C"), region):
            classes.append(f"hide-on-{bp}")
    return " ".join(classes)


def block_classes(block: Block) -> str:
    classes = ["block", f"block-{block.type}"]
    for bp in block.breakpoint_visibility or []:
        if bp in BREAKPOINTS:
            classes.append(f"hide-on-{bp}")
    return " ".join(classes)


def shown_to(block: Block, visitor: VisitorContext | None, now: datetime | None = None) -> bool:
    """Active, known type, and passing its display conditions for this visitor."""
    now = now or datetime.utcnow()
    if not block.is_active(now) or get_block_type(block.type) is None:
        return False
    return block_visible((block.settings or {}).get("conditions"), visitor, now)


def render_layout(
    biolink: "BioLink",
    now: datetime | None = None,
    visitor: VisitorContext | None = None,
) -> list[RenderedRegion]:
    """Regions enabled on at least one breakpoint, each with the blocks this visitor may see."""
    now = now or datetime.utcnow()
    layout = layout_for(biolink)
    out = []
    for region in REGIONS:
        if not any(region_enabled(layout[bp], region) for bp in BREAKPOINTS):
            continue
        rendered = RenderedRegion(name=region, css_classes=region_classes(layout, region))
        for block in region_blocks(biolink, region):
            if not shown_to(block, visitor, now):
                continue
            rendered.blocks.append(
                RenderedBlock(block=block, css_classes=block_classes(block), tracked=block.type in LINK_BLOCK_TYPES)
            )
        out.append(rendered)
    return out
