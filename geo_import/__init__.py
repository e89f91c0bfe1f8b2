"""Geospatial vector file import pipeline.

Decodes shapefile and DXF sources into features, reprojects their
coordinates between registered reference systems, and streams them in
checkpointed, retried batches into an external store.
"""

__version__ = "0.1.0"
