__version_label__ = "1.0.0"
__release_date__ = "2026-10-19"
