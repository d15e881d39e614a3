"""
batchpipe plugin packages.

Only sinks are pluggable: see ``batchpipe.plugins.sinks.BaseSink``.
"""
