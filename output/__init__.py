"""
output package

Discovery log writer.
"""
