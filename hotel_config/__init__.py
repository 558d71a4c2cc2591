"""
Deployment configuration: environment settings, rules overrides, and the
YAML chart-of-accounts seed.
"""

from hotel_config.loader import load_chart_of_accounts, load_rules_file
from hotel_config.settings import AppSettings

__all__ = ["AppSettings", "load_chart_of_accounts", "load_rules_file"]
