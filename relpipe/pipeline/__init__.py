"""Release pipeline bounded context.

- version: next package version derivation
- artifacts: run-scoped handoff values between stages
- provisioner: ephemeral environment lifecycle
- executor: fail-fast execution of one stage
- controller: stage sequencing and the manual approval gate
- stages: the code-testing / integration-testing / app-deploy definitions
- sfdx, secrets: adapters for the external platform and credentials
"""

from __future__ import annotations
