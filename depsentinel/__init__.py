"""depsentinel: scan vanagon build targets for vulnerable gem dependencies."""

__version__ = "0.1.0"
