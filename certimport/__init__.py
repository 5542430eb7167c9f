"""
certimport: import X.509 certificates into a certificate store.

Certificates are loaded from files, keystores, the system's installed trust
anchors or a live TLS endpoint, reconciled against what the store already
holds, and committed only after the operator confirms.
"""

__version__ = "1.0.0"
