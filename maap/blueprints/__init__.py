"""
MAAP Snapshot Platform
Blueprint registry.
"""

from maap.blueprints.maap_snapshot_bp import maap_snapshot_bp

ALL_BLUEPRINTS = (maap_snapshot_bp,)
