"""LMS Assessment Engine."""
