"""StudyVault data-integrity sweep engine."""

from .core.config import VERSION

__version__ = VERSION
