"""
Sectioned Report Builder.

Generates industry automation reports section by section: sections are
fetched in small concurrent batches with automatic retries, tracked
individually, recorded to a local history and compiled into one document.
"""
