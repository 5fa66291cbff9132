"""
Links: bio pages, short links, file links, vCards, events and static pages.

One table holds every type; type-specific data lives in settings JSON.
Slugs are unique per domain (NULL domain means the default host).
Creation is gated by the bio.pages / bio.shortlinks entitlements.
"""
