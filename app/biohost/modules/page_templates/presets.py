"""System templates seeded by scripts/init_db.py. Strings may carry {{placeholders}}."""
from __future__ import annotations

from typing import Any


SYSTEM_TEMPLATES: list[dict[str, Any]] = [
    {
        "slug": "creator-basic",
        "name": "Creator",
        "category": "creator",
        "description": "Avatar, a short bio and a stack of links.",
        "placeholders": {"name": "Your name", "bio": "What you make and where to find it", "website": "https://example.com"},
        "tags": ["links", "social"],
        "settings": {"seo": {"title": "{{name}}", "description": "{{bio}}"}},
        "blocks": [
            {"type": "avatar", "region": "content", "settings": {"image": None, "size": 120, "alt": "{{name}}"}},
            {"type": "heading", "region": "content", "settings": {"text": "{{name}}", "heading_type": "h1"}},
            {"type": "paragraph", "region": "content", "settings": {"text": "{{bio}}"}},
            {"type": "link", "region": "content", "location_url": "{{website}}",
             "settings": {"name": "Website", "open_in_new_tab": True}},
            {"type": "socials", "region": "footer", "settings": {"socials": {}}},
        ],
    },
    {
        "slug": "small-business",
        "name": "Small business",
        "category": "business",
        "description": "Opening hours, a map and a booking link.",
        "placeholders": {
            "business_name": "Your business",
            "address": "1 High Street, London",
            "booking_url": "https://example.com/book",
        },
        "tags": ["local", "hours"],
        "settings": {"seo": {"title": "{{business_name}}"}},
        "blocks": [
            {"type": "heading", "region": "header", "settings": {"text": "{{business_name}}", "heading_type": "h1"}},
            {"type": "link", "region": "content", "location_url": "{{booking_url}}",
             "settings": {"name": "Book an appointment", "open_in_new_tab": True}},
            {"type": "business_hours", "region": "content", "settings": {"hours": {}, "timezone": "Europe/London"}},
            {"type": "map", "region": "content", "settings": {"address": "{{address}}"}},
        ],
    },
    {
        "slug": "musician",
        "name": "Musician",
        "category": "music",
        "description": "Latest release on Spotify plus tour and merch links.",
        "placeholders": {
            "artist": "Artist name",
            "spotify_url": "https://open.spotify.com/",
            "tour_url": "https://example.com/tour",
        },
        "tags": ["music", "embeds"],
        "settings": {"seo": {"title": "{{artist}}"}},
        "blocks": [
            {"type": "heading", "region": "content", "settings": {"text": "{{artist}}", "heading_type": "h1"}},
            {"type": "spotify", "region": "content", "location_url": "{{spotify_url}}", "settings": {}},
            {"type": "link", "region": "content", "location_url": "{{tour_url}}",
             "settings": {"name": "Tour dates", "open_in_new_tab": True}},
            {"type": "email_collector", "region": "footer",
             "settings": {"name": "Mailing list", "placeholder": "Your email", "button_text": "Join"}},
        ],
    },
    {
        "slug": "portfolio-pro",
        "name": "Portfolio",
        "category": "creator",
        "description": "Header, image grid and a contact call to action.",
        "placeholders": {"name": "Your name", "role": "Designer", "contact_url": "mailto:hello@example.com"},
        "tags": ["portfolio", "images"],
        "premium": True,
        "settings": {"seo": {"title": "{{name}} - {{role}}"}},
        "blocks": [
            {"type": "header", "region": "header", "settings": {"title": "{{name}}", "subtitle": "{{role}}", "image": None}},
            {"type": "image_grid", "region": "content", "settings": {"images": [], "columns": 2}},
            {"type": "divider", "region": "content", "settings": {"style": "solid"}},
            {"type": "link", "region": "content", "location_url": "{{contact_url}}",
             "settings": {"name": "Get in touch", "open_in_new_tab": False}},
        ],
    },
]
