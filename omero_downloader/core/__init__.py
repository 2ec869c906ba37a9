"""
Core application engine for orchestrating the download process.

This package contains the primary logic. The `DownloadManager` acts as the
high-level session coordinator. It relies on the `RequestExecutor` for remote
operations and on the `RelationshipGraph` to decide what to download.
"""
