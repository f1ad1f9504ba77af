"""Test-attempt lifecycle, grading and result computation service."""
