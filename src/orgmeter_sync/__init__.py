"""
Sync of imported OrgMeter records into the MCA CRM.
"""

from .version import __version__

__all__ = ["__version__"]
