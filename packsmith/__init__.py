"""packsmith — install, update and repair agent resource trees.

The reconciliation engine is single-actor: one process reconciles one
installation root at a time. There is no cross-process locking; running two
reconciliations against the same root concurrently is undefined behaviour
and must be prevented by the caller.
"""

__version__ = "0.3.0"
