"""
Custom warnings used inside recondiff.
"""


class RecondiffWarning(UserWarning):
    """
    Parent class of all warnings raised in recondiff.
    """


class DenseWarning(RecondiffWarning):
    """
    Use for sparse-based algos which revert to dense arrays.
    """


class BackendWarning(RecondiffWarning):
    """
    Inform user of a backend-specific problem to be aware of.
    """
