"""
Budget Tracker - Source Package

The local data engine of a personal spending tracker: the record store,
versioned JSON backups, restore, and the automatic backup scheduler.

DESIGN PRINCIPLES:
1. Backups are immutable snapshots, never edited in place
2. Restore is all-or-nothing wherever the store allows it
3. Read paths degrade, write paths fail loudly
4. Destructive actions need explicit confirmation
5. Storage and OS facilities are swappable
"""

__version__ = "1.0.0"
__author__ = "Budget Tracker Team"
