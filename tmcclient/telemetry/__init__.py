"""Telemetry subsystem ("spyware" in the server's vocabulary).

Events are produced locally (source snapshots on file changes), buffered,
packed into one batch and uploaded in a single multipart request. Nothing
here changes what gets submitted for grading.
"""
