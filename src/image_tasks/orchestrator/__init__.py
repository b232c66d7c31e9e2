"""Task orchestration for asynchronous image resizing.

A submitted image reference becomes a PENDING task plus exactly one queued
job.  Workers claim jobs from the SQLite-backed queue, drive the task
through PROCESSING to COMPLETED or FAILED, and write resized variants into
the content store.  The queue owns redelivery; the worker owns the task
state machine.
"""
