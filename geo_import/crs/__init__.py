"""Coordinate reference systems.

- registry: CoordinateSystemRegistry with the built-in Swiss and WGS84 systems
- transformer: CoordinateTransformer with a pair-keyed operation cache
"""
