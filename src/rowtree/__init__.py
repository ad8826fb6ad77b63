"""rowtree — persist nested record trees into related relational tables."""

__version__ = "0.1.0"
