"""Background tasks package."""
from nocrop.tasks.cleanup import lock_reaper_loop, run_reaper_once

__all__ = ['lock_reaper_loop', 'run_reaper_once']
