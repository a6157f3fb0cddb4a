"""LMS Assessment Engine - Core."""
