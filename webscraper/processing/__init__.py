"""
Post-processing of scrape outcomes.
"""

from .processor import ContentProcessor

__all__ = ['ContentProcessor']
