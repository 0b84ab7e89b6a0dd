"""
Web Crawler System

A parallel web crawler that ranks the most popular words across linked pages.
"""

__version__ = "1.0.0"
__author__ = "Alex Nguyen"
__description__ = "A parallel web crawler that aggregates word frequencies across linked pages"
