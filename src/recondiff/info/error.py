"""
Custom exceptions used inside recondiff.

All of them denote caller misuse: there is no transient condition to retry on.
"""


class RecondiffError(ValueError):
    """
    Parent class of all exceptions raised in recondiff.
    """


class InvalidDimsError(RecondiffError):
    """
    Differencing axes are empty, out-of-range or repeated.
    """


class LengthMismatchError(RecondiffError):
    """
    A difference-stack vector does not have the length implied by (shape, dims).
    """


class DegenerateAxisError(RecondiffError, IndexError):
    """
    Differencing axes mix size-1 axes with larger ones.

    The adjoint is undefined in this configuration: the size-1 axis contributes an empty block whose
    boundary samples do not exist.
    """
