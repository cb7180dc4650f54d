"""Feature modules for :mod:`notevec`."""
