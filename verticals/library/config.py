"""Library vertical configuration.

Loads LibraryConfig from the environment once at import, demonstrating how
the vertical uses the domain config pattern.
"""

from patterns.domain_config import LibraryConfig

# Default configuration instance
config = LibraryConfig.from_env()
