# wolmgr/__version__.py
"""
Version information for the Wake-on-LAN task manager.

The version follows semantic versioning: MAJOR.MINOR.PATCH

- MAJOR: Incompatible API changes
- MINOR: Add functionality in a backward compatible manner
- PATCH: Backward compatible bug fixes
"""

__version__ = "0.4.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Additional version metadata
__author__ = "wolmgr maintainers"
__email__ = "maintainers@wolmgr.invalid"
__license__ = "Licence LGPL 3.0"
__description__ = "wolmgr - Wake-on-LAN task queue with concurrency-safe claiming"
