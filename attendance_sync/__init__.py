"""Attendance sync: chunked, resumable ingestion of SIS attendance into the warehouse."""
