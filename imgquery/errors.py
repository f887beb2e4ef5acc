"""Exception hierarchy for imgquery."""
from __future__ import annotations


class ImgQueryError(Exception):
    """Base class for all imgquery errors."""


class CriteriaError(ImgQueryError, ValueError):
    """Search criteria are malformed (bad range, conflicting flags, ...)."""


class CatalogError(ImgQueryError):
    """The image catalog cannot be opened."""
