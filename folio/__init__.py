"""
Folio: administrative backend for a Git-backed portfolio site.

Site content lives as JSON files in a Git repository. Every edit made
from the admin panel is persisted as a commit through the hosting
provider's API; there is no database.
"""

__version__ = "1.0.0"
