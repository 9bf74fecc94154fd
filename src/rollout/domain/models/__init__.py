"""Domain models package.

Import from the submodules directly; ``deployment`` depends on the events
package, which in turn depends on ``base``.
"""
