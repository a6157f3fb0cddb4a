"""LMS Assessment Engine - API Schemas."""
