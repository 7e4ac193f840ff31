"""
analyzer package

Record aggregation and inventory bucketing.
"""
