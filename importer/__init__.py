"""
Event import pipeline.

Turns uploaded CSV and Excel files into events: a resumable, batch-driven
stage machine that detects datasets, filters duplicates, infers a schema,
maps fields, geocodes addresses and materializes events.
"""

__version__ = "1.0.0"
