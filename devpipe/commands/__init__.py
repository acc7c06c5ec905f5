"""
devpipe.commands - Long-running surfaces: dev server and file watcher.
"""
