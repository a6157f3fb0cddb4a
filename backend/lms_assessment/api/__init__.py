"""LMS Assessment Engine - API."""
