"""
library-dl: resumable, bounded-parallel downloader for document libraries.
"""

__version__ = "1.0.0"
