"""notepress - publish notes and Ghost posts as blog posts with deduplicated media."""

__version__ = "0.1.0"
