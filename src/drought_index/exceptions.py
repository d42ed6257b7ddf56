"""
Exception hierarchy for the drought index pipeline.

Input-integrity errors (AlignmentError, IrregularCalendarError,
GridMismatchError, EmptyRangeError) stop the run: they indicate a wrong
analysis setup and retrying cannot help. Per-site errors
(IncompleteSeriesError, FitError) are handled by the index engine's
error policy.

Errors carry plain messages so they survive pickling between worker
processes.
"""


class DroughtIndexError(Exception):
    """Base exception for all pipeline errors."""


class AlignmentError(DroughtIndexError):
    """
    Precipitation and PET records do not cover the same (site, timestamp) set.

    Example:
        >>> raise AlignmentError(
        ...     "Site 3: timestamp 2001-05-04 present in precipitation, missing in PET"
        ... )
    """


class IrregularCalendarError(DroughtIndexError):
    """A site's series length is not a multiple of 365 after leap-day removal."""


class GridMismatchError(DroughtIndexError):
    """Two grids use coordinate reference systems that cannot be reconciled."""


class EmptyRangeError(DroughtIndexError):
    """A requested time window selects zero layers."""


class IncompleteSeriesError(DroughtIndexError):
    """A site mixes missing and present values; the fit cannot tolerate holes."""


class FitError(DroughtIndexError):
    """The normalization capability failed for a site."""
