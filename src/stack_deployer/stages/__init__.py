"""Concrete deployment stages and the catalogues that order them."""

from .catalogue import build_deployment_stages, build_verification_stages
from .names import DEPLOYMENT_ORDER

__all__ = ["build_deployment_stages", "build_verification_stages", "DEPLOYMENT_ORDER"]
