"""Headless-browser harvester for Instagram profiles, hashtags, places and posts."""

__version__ = "0.1.0"
