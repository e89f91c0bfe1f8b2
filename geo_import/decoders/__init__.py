"""Format decoders turning raw file contents into features.

- shapefile: ESRI shapefile with optional .dbf/.prj companions
- dxf: ASCII drawing exchange format
"""
