"""Regulatory crosswalk and compliance-drift engine.

Maintains a versioned library of regulatory requirements, the N:N crosswalk
between internal controls and those requirement versions, coverage and
risk-weighted scoring over the crosswalk, gap detection, and drift detection
when a framework moves to a new version.

Entry point: `crosswalk_engine.core.engine.CrosswalkEngine`.
"""

__version__ = "0.1.0"
