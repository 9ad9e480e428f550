"""Connectors for the external document sources.

- Google Drive folder tree (office-style documents)
- Scraped documentation site
"""
