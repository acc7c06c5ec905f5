"""
devpipe - development build pipeline for script projects.

Transpiles a source tree, bundles it for a terminal runtime or injects it
into an HTML page served with live reload, and rebuilds on change.
"""

__version__ = "0.1.0"
