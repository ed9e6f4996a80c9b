"""
CMS Migrate - move a legacy relational content database into a headless CMS.

Reads rows from the legacy store (or a REST API), maps them onto target
collections, transfers the referenced media and writes the result through
the target store's REST interface. Re-runs are safe: every written record is
remembered in a persisted ID map and matched again by its natural key.
"""

__version__ = "0.1.0"
