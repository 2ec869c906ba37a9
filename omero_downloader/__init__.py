"""
omero-download: bulk download of original files from an OMERO server.
"""

__version__ = "0.1.0"
