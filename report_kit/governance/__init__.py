"""
Source governance: licence classification and the redistribution gate.

  governance/models.py         — SourceClassification and friends.
  governance/registry.py       — Load config/sources.toml into a SourceRegistry.
  governance/redistribution.py — RedistributionPolicy: display vs download.
  governance/reporter.py       — ASCII terminal formatters for CLI commands.

Technical vs legal
------------------
The licence categories in config/sources.toml encode each provider's terms
as the operator understands them.  This package enforces them; it does not
interpret them.
"""

from report_kit.governance.models import LicenseCategory, Purpose, SourceClassification
from report_kit.governance.redistribution import RedistributionPolicy
from report_kit.governance.registry import SourceRegistry, load_source_registry

__all__ = [
    "LicenseCategory",
    "Purpose",
    "RedistributionPolicy",
    "SourceClassification",
    "SourceRegistry",
    "load_source_registry",
]
