"""Target scheduling for probe pools."""

from .target_pools import NextTarget, TargetPoolDiagnostic, TargetPools

__all__ = ["NextTarget", "TargetPoolDiagnostic", "TargetPools"]
