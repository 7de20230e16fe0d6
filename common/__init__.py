"""
Shared leaf code for the kmoni services.

- types.py: station, grid, snapshot and status records
- errors.py: refresh-cycle error kinds
- logging_setup.py: JSON logging
- utils.py: clock, number parsing and running stats helpers
"""
