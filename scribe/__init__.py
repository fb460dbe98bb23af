"""
Scribe - blogging/CMS backend with scheduled publishing.
"""
__version__ = "1.0.0"
