"""Batch submission engine for OData upload tools.

Turns an ordered list of validated business records into one or more
remote submissions and returns a single aggregated result.
"""
