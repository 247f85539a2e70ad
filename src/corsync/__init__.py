"""
Corsync - COR Audit Evidence Synchronization

Keep your audit binder current without building it by hand.

Corsync exports a company's safety records (forms, documents, worker
certifications, training and equipment maintenance) to an external audit
platform as evidence, filed under the 14 COR audit elements.

Key Features:
    - Connects to the audit platform with an encrypted, per-tenant API key
    - Maps every record type to its COR element and audit question
    - Incremental exports that never upload the same record twice
    - Per-item error reporting; one bad record never stops a run
    - Full run history for every tenant

Design Principles:
    - Tenant isolation: every query and upload is scoped to one tenant
    - Transparency: every run is logged with per-type counts
    - Security: HTTPS only, keys encrypted at rest and never logged
"""

__version__ = "0.1.0"
__author__ = ""
__email__ = ""

from corsync.config.settings import Settings, load_config

__all__ = [
    "__version__",
    "Settings",
    "load_config",
]
