"""Exceptions raised by the fusion core."""


class EmptyInputError(ValueError):
    """A statistic (mean, standard deviation, median) was requested over zero samples."""
