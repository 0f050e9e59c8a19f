"""
Utility subpackage for the AOA engine:
- config_loader   → YAML loader & overrides
- logging_utils   → unified logger setup
- io              → JSON/hash helpers for stage artifacts
"""
