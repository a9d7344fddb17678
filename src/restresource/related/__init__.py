"""Relation declarations and the manager that resolves them."""

from restresource.related.manager import RelatedManager
from restresource.related.values import Relation, classify

__all__ = ["Relation", "RelatedManager", "classify"]
