"""
Per-page notification handlers (webhook, email, Slack, Discord, Telegram).

Delivery is synchronous and never raises into the request; handlers disable
themselves after repeated consecutive failures.
"""
