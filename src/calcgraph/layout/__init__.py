"""Force-directed layout."""

from calcgraph.layout.force import ForceLayout

__all__ = ["ForceLayout"]
