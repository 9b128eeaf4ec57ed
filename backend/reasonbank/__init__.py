"""ReasonBank - learning/memory core for analyst agents."""

__version__ = "1.0.0"
