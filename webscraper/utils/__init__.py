"""
Utility modules for the web scraper: configuration, logging, monitoring.
"""
