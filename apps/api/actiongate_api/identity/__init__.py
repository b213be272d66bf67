from .resolver import CanonicalIdentityResolver, InvalidMarkerError, ResolveResult

__all__ = ["CanonicalIdentityResolver", "InvalidMarkerError", "ResolveResult"]
