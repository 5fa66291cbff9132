"""
Block editor for bio pages.

Blocks sit in HLCRF regions (header, left, content, right, footer) and carry
a per-breakpoint visibility list. Tiered block types need bio.tier.* entitlements.
"""
