"""
Custom domains: TXT-record verification, enable/disable and per-domain routing.
"""
