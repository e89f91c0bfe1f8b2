"""Notice and error aggregation for import sessions."""

from geo_import.notices.aggregator import NoticeAggregator

__all__ = ["NoticeAggregator"]
