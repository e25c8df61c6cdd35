"""Nova App Hub: reproducible, attestable enclave image builds.

Pipeline: validate -> resolve -> stage one (image build + push)
    -> stage two (enclave conversion + measurement) -> publish.

  - Untrusted nova-build.yaml submissions validated in one batch pass
  - Deterministic build requests (pinned commit, SOURCE_DATE_EPOCH)
  - Digest-pinned hand-off between independently provisioned stages
  - Exactly-once, content-checked publication per (app, version)
  - Hash-chained audit ledger of every stage transition
"""

__version__ = "0.1.0"
__description__ = "Reproducible build pipeline for attestable enclave images"

from novahub.core.orchestrator import Orchestrator

__all__ = ["Orchestrator", "__version__"]
