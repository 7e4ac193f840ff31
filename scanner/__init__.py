"""
scanner package

Candidate sources, probe engine, worker pool and scan orchestration.
"""
