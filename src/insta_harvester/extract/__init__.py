"""Parsers turning page data and API payloads into output records."""
