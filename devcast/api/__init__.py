"""HTTP surface for DevCast."""
from .security import compute_github_signature, verify_api_key, verify_github_signature

__all__ = ["compute_github_signature", "verify_api_key", "verify_github_signature"]
