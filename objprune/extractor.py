"""
Annotates discovered objects with the time bucket they belong to.
"""

import posixpath

from .models import ObjectRecord
from .timefilter import TimeFormat


class BucketExtractor:
    """Attaches a timestamp and a basename to each discovered object."""

    def __init__(self, time_filter: TimeFormat):
        self.time_filter = time_filter

    def annotate(self, record: ObjectRecord) -> ObjectRecord:
        # a None timestamp is passed through; the policy rejects it
        timestamp = self.time_filter.extract_begin_time_for(record.path)
        return record.annotated(timestamp, posixpath.basename(record.path))
